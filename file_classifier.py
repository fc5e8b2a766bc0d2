"""
Excel File Classifier
Scores every sheet of a workbook against content heuristics and labels
the file as opco_review, asset_valuation, portfolio_model, gl_mapping or
unknown, with a confidence and the evidence that produced it
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from extraction_models import FileClassification
from pipeline_config import section
from sheet_utils import (
    Sheet, cell_text, count_gl_codes, is_facility_named, is_gl_code, sheet_text,
)

logger = logging.getLogger(__name__)

# ============================================================================
# PATTERNS
# ============================================================================

T13_SHEET = re.compile(r"t13|dollars\s*and\s*ppd", re.I)
EBITDA_LABELS = re.compile(r"\b(ebitda|ebitdar|ebit)\b", re.I)
PPD_HEADER = re.compile(r"\bppd\b|per\s*patient\s*day|per\s*diem", re.I)
ANNUAL_MONTHLY = re.compile(r"\b(annual|monthly|actual)\b", re.I)
FACILITY_SECTION = re.compile(r"\((?:SNF|ALF|MC|IL|Opco|SNF_AL_IL)\)", re.I)
VALUATION_INDICATORS = re.compile(r"\b(cap\s*rate|multiplier|value\s*per\s*bed|valuation)\b", re.I)
VALUATION_SHEET = re.compile(r"valuation", re.I)
LOI_SHEET = re.compile(r"\bloi\b", re.I)
BEDS_HEADER = re.compile(r"^(beds?|total\s*beds?|licensed\s*beds?|units?)$", re.I)
PORTFOLIO_SHEETS = re.compile(r"\b(current\s*state|85%?\s*occupancy|rollup|roll-up)\b", re.I)
ENTITY_GROUPS = re.compile(r"\b(OR-|WA-|SNF\s*-?\s*Owned|Leased|AL/IL|SNC)", re.I)
MAPPING_SHEET = re.compile(r"\b(mapping|map|crosswalk|xref)\b", re.I)

# Ties resolve in this order
TYPE_ORDER = ["opco_review", "asset_valuation", "portfolio_model", "gl_mapping"]


def _empty_scores() -> Dict[str, int]:
    return {t: 0 for t in TYPE_ORDER}


def _has_mapping_structure(rows: Sequence[Sequence]) -> bool:
    """Rows 5-50 look like code | label pairs"""
    pairs = 0
    for row in rows[5:50]:
        if not row or len(row) < 2:
            continue
        if is_gl_code(row[0]) and isinstance(row[1], str) and row[1].strip():
            pairs += 1
    return pairs > 10


def _has_beds_column(rows: Sequence[Sequence]) -> bool:
    for row in rows[:15]:
        for value in row or []:
            if BEDS_HEADER.match(cell_text(value)):
                return True
    return False


# ============================================================================
# SHEET SCORING
# ============================================================================

def score_sheet(sheet: Sheet) -> Tuple[Dict[str, int], List[str]]:
    """
    Score one sheet against every file type

    Args:
        sheet: The sheet grid

    Returns:
        (scores per file type, indicator strings)
    """
    scores = _empty_scores()
    indicators: List[str] = []
    rows = sheet.rows
    name = sheet.name or ""
    text = sheet_text(rows, 50)
    gl_count = count_gl_codes(rows)

    # Opco / T13
    if T13_SHEET.search(name):
        scores["opco_review"] += 30
        indicators.append(f"T13 sheet name: {name}")
    if gl_count > 20:
        scores["opco_review"] += 20
        indicators.append(f"{gl_count} GL codes in '{name}'")
    elif gl_count > 5:
        scores["opco_review"] += 10
        indicators.append(f"{gl_count} GL codes in '{name}'")
    if EBITDA_LABELS.search(text):
        scores["opco_review"] += 5
        indicators.append("EBITDA/EBITDAR labels")
    if PPD_HEADER.search(text) and ANNUAL_MONTHLY.search(text):
        scores["opco_review"] += 10
        indicators.append("PPD with annual/monthly columns")
    if FACILITY_SECTION.search(text):
        scores["opco_review"] += 10
        indicators.append("Facility section headers")
    if len(rows) > 500:
        scores["opco_review"] += 5

    # Asset valuation
    if VALUATION_INDICATORS.search(text):
        scores["asset_valuation"] += 15
        indicators.append("Valuation vocabulary")
    if VALUATION_SHEET.search(name):
        scores["asset_valuation"] += 20
        indicators.append(f"Valuation sheet: {name}")
    if LOI_SHEET.search(name):
        scores["asset_valuation"] += 15
        indicators.append(f"LOI sheet: {name}")
    if len(rows) < 60 and _has_beds_column(rows):
        scores["asset_valuation"] += 10
        indicators.append("Beds column in a short sheet")

    # Portfolio model
    if PORTFOLIO_SHEETS.search(name):
        scores["portfolio_model"] += 20
        indicators.append(f"Portfolio sheet: {name}")
    if ENTITY_GROUPS.search(text):
        scores["portfolio_model"] += 10
        indicators.append("Entity group labels")
    if is_facility_named(name):
        scores["portfolio_model"] += 5

    # GL mapping
    if MAPPING_SHEET.search(name):
        scores["gl_mapping"] += 20
        indicators.append(f"Mapping sheet: {name}")
    if gl_count > 50 and len(rows) > 100 and _has_mapping_structure(rows):
        scores["gl_mapping"] += 15
        indicators.append("GL code / label mapping structure")

    return scores, indicators


def classify_excel_file(sheets: Sequence[Sheet], document_id: str, filename: str,
                        config: Optional[dict] = None) -> FileClassification:
    """
    Classify a workbook by aggregating per-sheet scores

    Args:
        sheets: All sheets of the file
        document_id: Caller's identifier for the file
        filename: Original filename
        config: Optional configuration (classifier section)

    Returns:
        An immutable FileClassification
    """
    cfg = section(config, "classifier")
    totals = _empty_scores()
    indicators: List[str] = []
    sheet_summary = []

    for sheet in sheets:
        scores, sheet_indicators = score_sheet(sheet)
        for file_type, score in scores.items():
            totals[file_type] += score
        indicators.extend(sheet_indicators)

        best = max(TYPE_ORDER, key=lambda t: (scores[t], -TYPE_ORDER.index(t)))
        sheet_summary.append({
            "name": sheet.name,
            "row_count": sheet.row_count,
            "suggested_type": best if scores[best] > 0 else "unknown",
        })

    facility_sheets = sum(1 for s in sheets if is_facility_named(s.name))
    if len(sheets) >= 5 and facility_sheets >= 2:
        totals["portfolio_model"] += 15
        indicators.append(f"{facility_sheets} facility-named sheets of {len(sheets)}")

    winner = max(TYPE_ORDER, key=lambda t: (totals[t], -TYPE_ORDER.index(t)))
    max_score = totals[winner]
    file_type = winner if max_score >= cfg["min_score"] else "unknown"
    confidence = min(max_score / float(cfg["confidence_divisor"]), 1.0)

    logger.info("Classified %s as %s (score %d, confidence %.2f)",
                filename, file_type, max_score, confidence)

    return FileClassification(
        document_id=document_id,
        filename=filename,
        file_type=file_type,
        confidence=round(confidence, 4),
        indicators=tuple(indicators),
        sheet_summary=tuple(sheet_summary),
    )


__all__ = ["classify_excel_file", "score_sheet", "TYPE_ORDER"]
