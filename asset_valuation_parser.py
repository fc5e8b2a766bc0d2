"""
Asset Valuation Parser
Extracts per-facility valuation inputs (beds, SNC%, cap rate or
multiplier, EBITDA / net income, value and value per bed by year) from
asset valuation workbooks

Section subtotal rows follow their member rows, so parsing is two-phase:
rows are classified and buffered first, then each buffered entry takes
the property type of the nearest section boundary AFTER it.
"""

import bisect
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from extraction_models import (
    ALF_SNC_OWNED, LEASED, PROPERTY_TYPES, SNF_OWNED,
    AssetValuationEntry, AssetValuationResult, CategoryTotal, PortfolioTotal,
)
from pipeline_config import section
from sheet_utils import (
    Row, Sheet, cell_text, dedupe_by_name, find_by_name, first_match, parse_number,
)

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"

# ============================================================================
# PATTERNS
# ============================================================================

SECTION_HEADER_RULES = [
    (re.compile(r"snf\s*[-–—]?\s*owned", re.I), SNF_OWNED),
    (re.compile(r"\bleased\b", re.I), LEASED),
    (re.compile(r"\balf\b|al\s*/\s*il|assisted\s*living|specific\s*needs|\bsnc\b", re.I), ALF_SNC_OWNED),
]
# What is left of a label once section vocabulary is removed decides
# whether the label is only a section heading
SECTION_NOISE = re.compile(
    r"snf|owned|leased?|alf|al\s*/\s*il|assisted\s*living|specific\s*needs|snc|"
    r"facilities|facility|properties|property|portfolio|sub\s*-?\s*total|total|\band\b|[-–—/&():\s]",
    re.I)
SUBTOTAL = re.compile(r"^(sub\s*-?\s*total|total|grand\s*total)\b", re.I)

VALUATION_SHEET = re.compile(r"valuation|asset|value", re.I)
LOI_SHEET = re.compile(r"\bloi\b", re.I)

HEADER_NAME = re.compile(r"^(property|facility|name|facility\s*name|property\s*name)$", re.I)
HEADER_BEDS = re.compile(r"^(beds?|total\s*beds?|licensed(\s*beds)?|units)$", re.I)
HEADER_SNC = re.compile(r"snc", re.I)
HEADER_VALUE_PER_BED = re.compile(r"\$\s*/\s*bed|value\s*per\s*bed|per\s*bed", re.I)
HEADER_EBITDA = re.compile(r"ebitda", re.I)
HEADER_NET_INCOME = re.compile(r"\bni\b|net\s*income", re.I)
HEADER_RATE = re.compile(r"cap\s*rate|multiplier|multiple", re.I)
HEADER_VALUE = re.compile(r"^value$|total\s*value|^(20\d{2}\s*)?value$|value\s*(20\d{2})$", re.I)
HEADER_CITY = re.compile(r"^city$", re.I)
HEADER_STATE = re.compile(r"^state$|^st$", re.I)
YEAR_TOKEN = re.compile(r"\b(20\d{2})\b")

# Default layout when no header row is found
DEFAULT_LAYOUT = {
    "name_col": 1, "beds_col": 2, "snc_col": 3, "rate_col": 7,
    "metric_cols": [(6, "metric", 0), (11, "metric", 1)],
    "value_cols": [(8, 0), (13, 1)],
    "vpb_cols": [(9, 0), (14, 1)],
    "data_start": 7,
}

# Entries after the last boundary: first matching rule wins
AUTO_DETECT_RULES = [
    (lambda e: e.multiplier is not None, LEASED),
    (lambda e: e.cap_rate is not None and 0.11 <= e.cap_rate <= 0.14, SNF_OWNED),
    (lambda e: e.cap_rate is not None and 0.07 <= e.cap_rate <= 0.13, ALF_SNC_OWNED),
    (lambda e: bool(e.snc_percent), ALF_SNC_OWNED),
]

METHOD_LABELS = {
    SNF_OWNED: "EBITDA / Cap Rate",
    LEASED: "NI × Multiplier",
    ALF_SNC_OWNED: "EBITDA / Cap Rate",
}


# ============================================================================
# HELPERS
# ============================================================================

def _get(row: Row, idx: Optional[int]):
    if idx is None or idx < 0 or not row or idx >= len(row):
        return None
    return row[idx]


def section_type_for(text: str) -> Optional[str]:
    return first_match(SECTION_HEADER_RULES, text)


def is_section_label(text: str) -> bool:
    """True when a label is nothing but property-type / subtotal vocabulary"""
    if not text or section_type_for(text) is None:
        return False
    return SECTION_NOISE.sub("", text) == ""


def _is_facility_like(text: str) -> bool:
    return (len(text) >= 3 and parse_number(text) is None
            and not SUBTOTAL.search(text) and not is_section_label(text))


def _parse_rate(value) -> Optional[float]:
    number = parse_number(value)
    if number is None or number <= 0:
        return None
    if isinstance(value, str) and value.strip().endswith("%"):
        number = number / 100.0
    return number


def _parse_percent(value) -> Optional[float]:
    number = parse_number(value)
    if number is None:
        return None
    return number / 100.0 if number > 1 else number


# ============================================================================
# COLUMN DETECTION
# ============================================================================

def detect_columns(rows: Sequence[Row], default_years: Sequence[str]) -> Tuple[Dict, bool]:
    """
    Locate the valuation columns

    Returns:
        (layout dict, header_found). The first EBITDA/NI/value/$-per-bed
        column is the first year, the second the next year.
    """
    for i, row in enumerate(rows[:10]):
        texts = [cell_text(v) for v in (row or [])]
        name_col = next((j for j, t in enumerate(texts) if HEADER_NAME.match(t)), -1)
        beds_col = next((j for j, t in enumerate(texts) if HEADER_BEDS.match(t)), -1)
        if name_col < 0 and beds_col < 0:
            continue

        layout = {
            "name_col": name_col, "beds_col": beds_col, "snc_col": None, "rate_col": None,
            "metric_cols": [], "value_cols": [], "vpb_cols": [], "data_start": i + 1,
        }
        for j, text in enumerate(texts):
            if not text or j in (name_col, beds_col):
                continue
            year_match = YEAR_TOKEN.search(text)
            year = year_match.group(1) if year_match else None
            if HEADER_SNC.search(text) and layout["snc_col"] is None:
                layout["snc_col"] = j
            elif HEADER_VALUE_PER_BED.search(text):
                layout["vpb_cols"].append((j, year or len(layout["vpb_cols"])))
            elif HEADER_RATE.search(text) and layout["rate_col"] is None:
                layout["rate_col"] = j
            elif HEADER_EBITDA.search(text) and HEADER_NET_INCOME.search(text):
                layout["metric_cols"].append((j, "metric", year or len(layout["metric_cols"])))
            elif HEADER_EBITDA.search(text):
                layout["metric_cols"].append((j, "ebitda", year or len(layout["metric_cols"])))
            elif HEADER_NET_INCOME.search(text):
                layout["metric_cols"].append((j, "net_income", year or len(layout["metric_cols"])))
            elif HEADER_VALUE.search(text):
                layout["value_cols"].append((j, year or len(layout["value_cols"])))

        if layout["name_col"] < 0:
            layout["name_col"] = _guess_name_col(rows[i + 1:i + 2])
        if layout["beds_col"] < 0:
            layout["beds_col"] = _guess_beds_col(rows[i + 1:i + 2], layout["name_col"])
        return _resolve_years(layout, default_years), True

    layout = {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULT_LAYOUT.items()}
    for i, row in enumerate(rows[:30]):
        name_col = _guess_name_col([row])
        beds_col = _guess_beds_col([row], name_col)
        if name_col >= 0 and beds_col >= 0:
            layout["name_col"], layout["beds_col"], layout["data_start"] = name_col, beds_col, i
            break
    return _resolve_years(layout, default_years), False


def _guess_name_col(rows: Sequence[Row]) -> int:
    for row in rows:
        for j, value in enumerate(row or []):
            if isinstance(value, str) and len(value.strip()) > 5 and parse_number(value) is None:
                return j
    return -1


def _guess_beds_col(rows: Sequence[Row], after: int) -> int:
    for row in rows:
        for j, value in enumerate(row or []):
            if j <= after or isinstance(value, str):
                continue
            number = parse_number(value)
            if number is not None and float(number).is_integer() and 10 <= number <= 500:
                return j
    return -1


def _resolve_years(layout: Dict, default_years: Sequence[str]) -> Dict:
    def _year(y):
        if isinstance(y, str):
            return y
        return default_years[y] if y < len(default_years) else str(int(default_years[-1]) + y - len(default_years) + 1)

    layout["metric_cols"] = [(c, kind, _year(y)) for c, kind, y in layout["metric_cols"]]
    layout["value_cols"] = [(c, _year(y)) for c, y in layout["value_cols"]]
    layout["vpb_cols"] = [(c, _year(y)) for c, y in layout["vpb_cols"]]
    return layout


# ============================================================================
# PHASE 1: CLASSIFY ROWS
# ============================================================================

def _row_label(row: Row, name_col: int) -> Tuple[str, List[str]]:
    """(name cell text, non-empty label-area texts)"""
    last = max(name_col, 1)
    texts = [cell_text(v) for v in (row or [])[:last + 1] if isinstance(v, str) and v.strip()]
    name = cell_text(_get(row, name_col)) if isinstance(_get(row, name_col), str) else ""
    if not name:
        name = next((t for t in texts if parse_number(t) is None), "")
    return name, texts


def _build_entry(row: Row, row_index: int, layout: Dict, name: str, beds: float,
                 sheet_name: str) -> Optional[AssetValuationEntry]:
    rate = _parse_rate(_get(row, layout["rate_col"]))
    cap_rate = multiplier = None
    if rate is not None:
        if rate > 1:
            multiplier = rate
        else:
            cap_rate = rate

    ebitda: Dict[str, float] = {}
    net_income: Dict[str, float] = {}
    for col, kind, year in layout["metric_cols"]:
        number = parse_number(_get(row, col))
        if not number:
            continue
        if kind == "metric":
            kind = "net_income" if multiplier is not None else "ebitda"
        (net_income if kind == "net_income" else ebitda)[year] = number

    values = {year: parse_number(_get(row, col)) for col, year in layout["value_cols"]}
    values = {y: v for y, v in values.items() if v}
    vpbs = {year: parse_number(_get(row, col)) for col, year in layout["vpb_cols"]}
    vpbs = {y: v for y, v in vpbs.items() if v}

    if not (ebitda or net_income or values):
        return None

    for year, metric in ebitda.items():
        if year not in values and cap_rate:
            values[year] = metric / cap_rate
    for year, metric in net_income.items():
        if year not in values and multiplier:
            values[year] = metric * multiplier
    for year, value in values.items():
        if year not in vpbs and beds > 0:
            vpbs[year] = value / beds

    return AssetValuationEntry(
        facility_name=name,
        property_type=UNASSIGNED,
        beds=beds,
        snc_percent=_parse_percent(_get(row, layout["snc_col"])),
        cap_rate=cap_rate,
        multiplier=multiplier,
        ebitda_by_year=ebitda,
        net_income_by_year=net_income,
        value_by_year=values,
        value_per_bed_by_year=vpbs,
        row_index=row_index,
        sheet_name=sheet_name,
    )


def classify_rows(sheet: Sheet, layout: Dict) -> Tuple[List[AssetValuationEntry], List[Tuple[int, str]]]:
    """
    Phase 1: split rows into buffered data entries and section boundaries

    A boundary's label area holds only property-type vocabulary and the row
    has no facility-like name; a data row needs a facility-like name, a
    positive bed count and at least one non-zero financial figure.
    """
    entries: List[AssetValuationEntry] = []
    boundaries: List[Tuple[int, str]] = []
    for idx in range(max(layout["data_start"], 0), len(sheet.rows)):
        row = sheet.rows[idx]
        if not row:
            continue
        name, labels = _row_label(row, layout["name_col"])
        beds = parse_number(_get(row, layout["beds_col"])) or 0.0
        facility_like = bool(name) and _is_facility_like(name)

        if not facility_like:
            label = next((t for t in labels if is_section_label(t)), None)
            if label is None and labels and is_section_label(" ".join(labels)):
                label = " ".join(labels)
            if label is not None:
                boundaries.append((idx, section_type_for(label)))
            continue
        if beds <= 0:
            continue

        entry = _build_entry(row, idx, layout, name, beds, sheet.name)
        if entry is not None:
            entries.append(entry)
    return entries, boundaries


# ============================================================================
# PHASE 2: ASSIGN PROPERTY TYPES
# ============================================================================

def auto_detect_type(entry: AssetValuationEntry) -> str:
    for predicate, property_type in AUTO_DETECT_RULES:
        if predicate(entry):
            return property_type
    return SNF_OWNED


def assign_property_types(entries: Sequence[AssetValuationEntry],
                          boundaries: Sequence[Tuple[int, str]]) -> int:
    """
    Phase 2: each entry takes the type of the nearest boundary after it

    Returns:
        Number of entries typed by auto-detection (after the last boundary)
    """
    ordered = sorted(boundaries)
    rows = [b[0] for b in ordered]
    auto = 0
    for entry in entries:
        pos = bisect.bisect_right(rows, entry.row_index)
        if pos < len(ordered):
            entry.property_type = ordered[pos][1]
        else:
            entry.property_type = auto_detect_type(entry)
            auto += 1
    return auto


# ============================================================================
# SCALE CHECK, ENRICHMENT & TOTALS
# ============================================================================

def apply_thousands_scale(entries: Sequence[AssetValuationEntry],
                          threshold: float = 5000, factor: float = 1000) -> bool:
    """
    Rescale every monetary field when the portfolio-wide average value per
    bed (total value over total beds) is implausibly low for whole dollars

    Returns:
        True when the entries were rescaled
    """
    valued = [e for e in entries if e.latest_value and e.latest_value > 0 and e.beds > 0]
    if not valued:
        return False
    values = np.array([e.latest_value for e in valued], dtype=float)
    beds = np.array([e.beds for e in valued], dtype=float)
    average = float(values.sum() / beds.sum())
    if average >= threshold:
        return False

    for entry in entries:
        for field_name in ("ebitda_by_year", "net_income_by_year", "value_by_year", "value_per_bed_by_year"):
            by_year = getattr(entry, field_name)
            setattr(entry, field_name, {year: v * factor for year, v in by_year.items()})
    logger.info("Average value per bed %.2f below %s; scaled %d entries x%s",
                average, threshold, len(entries), factor)
    return True


def enrich_from_loi(entries: Sequence[AssetValuationEntry], sheet: Sheet) -> int:
    """Attach city/state from an LOI sheet"""
    for i, row in enumerate(sheet.rows[:10]):
        texts = [cell_text(v) for v in (row or [])]
        name_col = next((j for j, t in enumerate(texts) if HEADER_NAME.match(t)), -1)
        city_col = next((j for j, t in enumerate(texts) if HEADER_CITY.match(t)), -1)
        state_col = next((j for j, t in enumerate(texts) if HEADER_STATE.match(t)), -1)
        if name_col < 0 or (city_col < 0 and state_col < 0):
            continue
        by_name = {e.facility_name: e for e in entries}
        enriched = 0
        for row in sheet.rows[i + 1:]:
            name = cell_text(_get(row, name_col))
            if not name:
                continue
            entry = find_by_name(name, by_name)
            if entry is None:
                continue
            if city_col >= 0 and cell_text(_get(row, city_col)):
                entry.city = cell_text(_get(row, city_col))
            if state_col >= 0 and cell_text(_get(row, state_col)):
                entry.state = cell_text(_get(row, state_col)).upper()
            enriched += 1
        return enriched
    return 0


def compute_totals(entries: Sequence[AssetValuationEntry]) -> Tuple[List[CategoryTotal], PortfolioTotal]:
    categories = []
    for property_type in PROPERTY_TYPES:
        members = [e for e in entries if e.property_type == property_type]
        if not members:
            continue
        beds = float(np.sum([e.beds for e in members]))
        value = float(np.sum([e.latest_value or 0.0 for e in members]))
        categories.append(CategoryTotal(
            category=property_type,
            property_type=property_type,
            facility_count=len(members),
            total_beds=beds,
            total_value=value,
            avg_value_per_bed=value / beds if beds else 0.0,
            valuation_method=METHOD_LABELS[property_type],
        ))

    total_beds = float(sum(c.total_beds for c in categories))
    total_value = float(sum(c.total_value for c in categories))
    portfolio = PortfolioTotal(
        facility_count=sum(c.facility_count for c in categories),
        total_beds=total_beds,
        total_value=total_value,
        avg_value_per_bed=total_value / total_beds if total_beds else 0.0,
    )
    return categories, portfolio


# ============================================================================
# MAIN PARSER
# ============================================================================

def parse_valuation_sheet(sheet: Sheet, default_years: Sequence[str] = ("2025", "2026")) -> Tuple[List[AssetValuationEntry], List[str]]:
    """Parse one valuation sheet: both phases, without scaling"""
    warnings = []
    layout, header_found = detect_columns(sheet.rows, default_years)
    if not header_found:
        warnings.append(f"Asset Valuation: no header row in '{sheet.name}', using default column layout")

    entries, boundaries = classify_rows(sheet, layout)
    auto = assign_property_types(entries, boundaries)
    if auto:
        warnings.append(
            f"Asset Valuation: {auto} entries after the last section boundary in '{sheet.name}' typed by rate")
    logger.debug("Sheet %s: %d entries, %d boundaries", sheet.name, len(entries), len(boundaries))
    return entries, warnings


def parse_asset_valuation(sheets: Sequence[Sheet], config: Optional[dict] = None) -> AssetValuationResult:
    """
    Parse asset valuation workbooks

    Args:
        sheets: Sheets of every file classified as asset_valuation
        config: Optional configuration (asset_valuation section)

    Returns:
        AssetValuationResult with entries, category and portfolio totals
    """
    cfg = section(config, "asset_valuation")
    result = AssetValuationResult()

    loi_sheets = [s for s in sheets if LOI_SHEET.search(s.name or "")]
    candidates = [s for s in sheets if s not in loi_sheets]
    preferred = [s for s in candidates if VALUATION_SHEET.search(s.name or "")]

    entries: List[AssetValuationEntry] = []
    for sheet in preferred or candidates:
        sheet_entries, warnings = parse_valuation_sheet(sheet, cfg["default_years"])
        entries.extend(sheet_entries)
        result.warnings.extend(warnings)

    unique = dedupe_by_name(entries, key=lambda e: e.facility_name)

    result.scaled_to_thousands = apply_thousands_scale(
        unique, cfg["scale_threshold_per_bed"], cfg["scale_factor"])
    if result.scaled_to_thousands:
        result.warnings.append("Asset Valuation: values appear to be in thousands; scaled x1000")

    for sheet in loi_sheets:
        enrich_from_loi(unique, sheet)

    result.entries = unique
    result.category_totals, result.portfolio_total = compute_totals(unique)
    if not unique:
        result.warnings.append("Asset Valuation: no valuation entries found")
    return result


__all__ = [
    "parse_asset_valuation", "parse_valuation_sheet", "classify_rows",
    "assign_property_types", "auto_detect_type", "apply_thousands_scale",
    "is_section_label", "compute_totals", "enrich_from_loi", "detect_columns",
]
