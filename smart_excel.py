"""
Smart Excel Extraction Orchestrator
Coordinates every parser to turn a set of workbooks into structured
facility financials, classifications, valuation and benchmarks:

1. Classify each file (opco_review, asset_valuation, portfolio_model, gl_mapping)
2. Order the files by extraction priority
3. Build the GL mapping first, then parse T13, asset valuation and portfolio files
4. Classify facilities, run the Cascadia valuation and benchmark the results
"""

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from asset_valuation_parser import parse_asset_valuation
from benchmarks import benchmark_portfolio
from cascadia_valuation import run_cascadia_valuation
from extraction_models import (
    FacilityClassification, FileClassification, SmartExtractionResult, T13ParseResult,
)
from facility_classifier import classify_facilities
from file_classifier import classify_excel_file
from gl_mapping_parser import parse_gl_mapping
from pipeline_config import section
from portfolio_model_parser import parse_portfolio_model
from sheet_utils import GL_CODE_RE, Sheet, Workbook, cell_text, normalize_name
from t13_parser import parse_t13
from workbook_io import EmptyWorkbookError

logger = logging.getLogger(__name__)

VALUATION_VOCABULARY = re.compile(r"cap\s*rate|multiplier|value\s*per\s*bed|valuation", re.I)
EARNINGS_VOCABULARY = re.compile(r"ebitda|ebitdar|net\s*income", re.I)
PERIOD_VOCABULARY = re.compile(r"annual|ppd|per\s*patient", re.I)


# ============================================================================
# CLASSIFICATION
# ============================================================================

def _check_workbook(workbook: Workbook) -> None:
    if not workbook.sheets or all(sheet.is_empty() for sheet in workbook.sheets):
        raise EmptyWorkbookError(f"Workbook '{workbook.filename}' has no data")


def classify_workbooks(workbooks: Sequence[Workbook], config: Optional[dict] = None,
                       max_workers: Optional[int] = None) -> List[FileClassification]:
    """Classify every workbook; results follow input order"""
    def _classify(workbook: Workbook) -> FileClassification:
        return classify_excel_file(workbook.sheets, workbook.document_id, workbook.filename, config)

    workers = max_workers or section(config, "orchestrator")["max_workers"]
    if workers > 1 and len(workbooks) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(_classify, workbooks))
    return [_classify(w) for w in workbooks]


def build_work_list(classifications: Sequence[FileClassification]) -> List[int]:
    """Input positions sorted stably by (extraction priority, input position)"""
    return sorted(range(len(classifications)),
                  key=lambda i: (classifications[i].extraction_priority, i))


# ============================================================================
# CONFIDENCE
# ============================================================================

def calculate_confidence(file_classifications: Sequence[FileClassification],
                         t13_data: Optional[T13ParseResult],
                         av_entry_count: int,
                         facility_classifications: Sequence[FacilityClassification]) -> float:
    """
    Mean of the available quality factors, capped at 1

    Factors: average file confidence; share of T13 facilities with non-zero
    EBITDA or EBITDAR; 0.9 when valuation entries exist; average
    classification confidence.
    """
    factors = []
    if file_classifications:
        factors.append(sum(c.confidence for c in file_classifications) / len(file_classifications))
    else:
        factors.append(0.0)

    if t13_data is not None and t13_data.facilities:
        with_earnings = sum(1 for f in t13_data.facilities
                            if f.summary_metrics.ebitda or f.summary_metrics.ebitdar)
        factors.append(with_earnings / len(t13_data.facilities))

    if av_entry_count:
        factors.append(0.9)

    if facility_classifications:
        factors.append(sum(c.confidence for c in facility_classifications) / len(facility_classifications))

    return min(sum(factors) / len(factors), 1.0)


# ============================================================================
# MAIN ORCHESTRATOR
# ============================================================================

def extract_smart_excel(workbooks: Sequence[Workbook], config: Optional[dict] = None,
                        max_workers: Optional[int] = None,
                        overrides: Optional[Dict[str, dict]] = None) -> SmartExtractionResult:
    """
    Run the full extraction and valuation pipeline

    Args:
        workbooks: Input files, each a document id, filename and sheets
        config: Optional configuration; defaults to the loaded CFG
        max_workers: Thread count for file classification
        overrides: Optional per-facility valuation overrides

    Returns:
        SmartExtractionResult

    Raises:
        EmptyWorkbookError: A workbook has no sheets or no data
    """
    start = time.perf_counter()
    result = SmartExtractionResult()
    if not workbooks:
        result.warnings.append("No files provided")
        return result

    for workbook in workbooks:
        _check_workbook(workbook)

    classifications = classify_workbooks(workbooks, config, max_workers)
    result.file_classifications = classifications
    work_list = build_work_list(classifications)

    def _sheets_of(file_type: str) -> List[Sheet]:
        return [sheet for i in work_list if classifications[i].file_type == file_type
                for sheet in workbooks[i].sheets]

    for i in work_list:
        if classifications[i].file_type == "unknown":
            result.warnings.append(f"Unrecognized file: {workbooks[i].filename}")

    # GL mapping first; every later parser reads it
    gl_indices = [i for i in work_list if classifications[i].file_type == "gl_mapping"]
    if gl_indices:
        result.gl_mapping = parse_gl_mapping(workbooks[gl_indices[0]].sheets)
        if result.gl_mapping:
            result.warnings.append(f"GL mapping loaded: {len(result.gl_mapping)} entries")
        for i in gl_indices[1:]:
            result.warnings.append(
                f"Additional GL mapping ignored: {workbooks[i].filename} "
                f"(using {workbooks[gl_indices[0]].filename})")

    opco_sheets = _sheets_of("opco_review")
    if opco_sheets:
        result.t13_data = parse_t13(opco_sheets, result.gl_mapping)
        result.warnings.extend(result.t13_data.warnings)
        if result.t13_data.facilities:
            result.warnings.append(f"T13: Parsed {len(result.t13_data.facilities)} facilities")

    av_sheets = _sheets_of("asset_valuation")
    if av_sheets:
        result.asset_valuation = parse_asset_valuation(av_sheets, config)
        result.warnings.extend(result.asset_valuation.warnings)
        if result.asset_valuation.entries:
            result.warnings.append(f"Asset Valuation: {len(result.asset_valuation.entries)} entries")

    portfolio_sheets = _sheets_of("portfolio_model")
    if portfolio_sheets:
        result.portfolio_model = parse_portfolio_model(portfolio_sheets, result.gl_mapping)
        result.warnings.extend(result.portfolio_model.warnings)
        if result.portfolio_model.scenarios:
            result.warnings.append(f"Portfolio: {len(result.portfolio_model.scenarios)} scenarios")
        _merge_portfolio_facilities(result)

    t13_facilities = result.t13_data.facilities if result.t13_data else []
    facility_mapping = result.t13_data.facility_mapping if result.t13_data else None
    av_entries = result.asset_valuation.entries if result.asset_valuation else []

    result.facility_classifications = classify_facilities(t13_facilities, av_entries, config, facility_mapping)
    if result.facility_classifications:
        result.warnings.append(f"Classified {len(result.facility_classifications)} facilities")
        counts: Dict[str, int] = {}
        for c in result.facility_classifications:
            counts[c.property_type] = counts.get(c.property_type, 0) + 1
        for property_type, count in counts.items():
            result.warnings.append(f"  {property_type}: {count}")

        result.cascadia_valuation = run_cascadia_valuation(
            result.facility_classifications, t13_facilities, av_entries, overrides, config)
        total = result.cascadia_valuation.portfolio_total
        if total.total_value > 0:
            result.warnings.append(
                f"Cascadia Valuation: ${total.total_value / 1e6:.1f}M "
                f"({total.facility_count} facilities, {total.total_beds:,.0f} beds)")

        states = {e.facility_name: e.state for e in av_entries if e.state}
        result.benchmarks = benchmark_portfolio(
            t13_facilities, result.facility_classifications,
            result.cascadia_valuation.facilities, states, config)

    result.confidence = calculate_confidence(
        classifications, result.t13_data, len(av_entries), result.facility_classifications)
    result.processing_time_ms = (time.perf_counter() - start) * 1000.0
    logger.info("Smart excel extraction: %d files, confidence %.2f, %.0f ms",
                len(workbooks), result.confidence, result.processing_time_ms)
    return result


def _merge_portfolio_facilities(result: SmartExtractionResult) -> None:
    """Append portfolio-model facilities not already parsed from opco files"""
    extra = result.portfolio_model.individual_facilities
    if not extra:
        return
    if result.t13_data is None:
        result.t13_data = T13ParseResult()
    known = {normalize_name(f.facility_name) for f in result.t13_data.facilities}
    added = 0
    for facility in extra:
        key = normalize_name(facility.facility_name)
        if key in known:
            continue
        known.add(key)
        result.t13_data.facilities.append(facility)
        added += 1
    if added:
        result.warnings.append(f"Portfolio: added {added} facilities from facility sheets")


# ============================================================================
# QUICK CHECK
# ============================================================================

def is_structured_excel_data(sheets: Sequence[Sheet]) -> bool:
    """
    Quick check whether sheets look like structured financial data

    True when a sheet has at least 5 GL codes in its first 50 rows,
    valuation vocabulary, or earnings vocabulary alongside annual/PPD.
    """
    for sheet in sheets or []:
        rows = sheet.rows
        if len(rows) < 5:
            continue
        gl_codes = sum(1 for row in rows[:50] for c in (row or []) if GL_CODE_RE.match(cell_text(c)))
        if gl_codes >= 5:
            return True

        text = " ".join(cell_text(c) for row in rows[:20] for c in (row or []) if cell_text(c))
        if VALUATION_VOCABULARY.search(text):
            return True
        if EARNINGS_VOCABULARY.search(text) and PERIOD_VOCABULARY.search(text):
            return True
    return False


__all__ = [
    "extract_smart_excel", "is_structured_excel_data", "classify_workbooks",
    "build_work_list", "calculate_confidence",
]
