"""
T13 / Opco Review Parser
Extracts per-facility line items and summary financial metrics from
trailing-13-period profit & loss workbooks

Handles two physical layouts:
  (a) one flat table where column 0 repeats the facility name on every row
  (b) a sheet per facility, or facility header rows interleaved with
      GL-coded line items
"""

import bisect
import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from extraction_models import (
    CensusData, FacilitySection, LineItem, SummaryMetrics, T13ParseResult,
)
from facility_mapping import enrich_sections, is_facility_mapping_sheet, parse_facility_mapping
from gl_mapping_parser import EMPTY_MAPPING, GLMapping, subcategorize_by_gl_code
from sheet_utils import (
    PARENTHETICAL_RE, Row, Sheet, cell_text, dedupe_by_name, find_by_name, first_match,
    is_blank, is_gl_code, non_empty_count, parse_number, split_gl_label,
)

logger = logging.getLogger(__name__)

# ============================================================================
# SHEET ROLES
# ============================================================================

T13_SHEET = re.compile(r"t13|dollars\s*and\s*ppd", re.I)
ROLLUP_SHEET = re.compile(r"rollup|roll-up|consolidated|summary", re.I)
FACILITY_SHEET = re.compile(r"\((SNF|ALF|MC|IL|SNF_AL_IL|SNF_AL|AL_IL)\)", re.I)
CURRENT_STATE_SHEET = re.compile(r"current\s*state|85%?\s*occupancy", re.I)
GL_MAPPING_SHEET = re.compile(r"crosswalk|gl\s*map", re.I)

ROLLUP_NAME = "Portfolio Rollup"

# ============================================================================
# SECTION HEADERS
# ============================================================================

# (pattern, kind); "typed" and "labeled" headers are taken as-is, "noun"
# headers need a GL-coded row within the lookahead window
FACILITY_HEADER_PATTERNS = [
    (re.compile(r"^(.+?)\s*\((SNF|ALF|MC|IL|Opco|SNF_AL_IL|SNF_AL|AL_IL)\)", re.I), "typed"),
    (re.compile(r"^(?:Location|Facility|Entity)\s*[:\s]\s*(.+)", re.I), "labeled"),
    (re.compile(r"^(.+?)\s*\b(?:SNF|Nursing|Healthcare|Care\s+Center|Rehab|Assisted\s+Living|Memory\s+Care)\b", re.I), "noun"),
]

RESERVED_HEADER_WORDS = re.compile(r"\b(total|subtotal|sub\s*total|revenues?|expenses?|ebitdar?|ebit|net\s*income)\b", re.I)
HEADER_LOOKAHEAD = 10

# ============================================================================
# SUMMARY ROWS (first matching rule wins per label; later rows win per metric)
# ============================================================================

SUMMARY_ROW_RULES = [
    (re.compile(r"^total\s*(?:net\s*|operating\s*|patient\s*service\s*)?revenues?\b", re.I), "total_revenue"),
    (re.compile(r"^total\s*(?:operating\s*)?expenses?\b", re.I), "total_expenses"),
    (re.compile(r"^ebitdar\b", re.I), "ebitdar"),
    (re.compile(r"^ebitda(?!r)\b", re.I), "ebitda"),
    (re.compile(r"^ebit(?!d)\b", re.I), "ebit"),
    (re.compile(r"^net\s*(?:operating\s*)?income", re.I), "net_income"),
    (re.compile(r"^management\s*fees?\b", re.I), "management_fee"),
    (re.compile(r"^(?:lease|rent)\s*expense", re.I), "lease_expense"),
    (re.compile(r"^provider\s*tax", re.I), "provider_tax"),
]
NOT_SUMMARY = re.compile(r"margin|%|\bppd\b|per\s*patient", re.I)

# ============================================================================
# LINE ITEM CATEGORIES
# ============================================================================

# GL prefix first; labels decide only when no code is present
GL_PREFIX_RULES = [
    (re.compile(r"^4"), "revenue"),
    (re.compile(r"^[5-8]"), "expense"),
    (re.compile(r"^9"), "census"),
]

LABEL_CATEGORY_RULES = [
    (re.compile(r"ebitda|ebitdar|\bebit\b|\bnoi\b|net\s*(income|operating)|margin", re.I), "metric"),
    (re.compile(r"\bdays\b|census|occupancy|\bbeds?\b|\badc\b", re.I), "census"),
    (re.compile(r"revenue|income|r&b|room.*board|patient\s*service", re.I), "revenue"),
    (re.compile(r"expense|cost|salary|salaries|wage|payroll|fee|tax|insurance|depreciation|amortization|interest", re.I), "expense"),
]

REVENUE_SUBCATEGORY_RULES = [
    (re.compile(r"managed\s*medicaid|medicaid\s*(mco|hmo)", re.I), "managed_medicaid_revenue"),
    (re.compile(r"medicaid|title\s*xix", re.I), "medicaid_revenue"),
    (re.compile(r"medicare\s*(advantage|hmo)|managed\s*care", re.I), "managed_care_revenue"),
    (re.compile(r"medicare", re.I), "medicare_revenue"),
    (re.compile(r"private|self[\s-]*pay", re.I), "private_revenue"),
]

IS_TOTAL = re.compile(r"^total\s|\btotal$", re.I)
IS_SUBTOTAL = re.compile(
    r"^sub\s*-?\s*total|^total\s+(snf|alf|il|mc|nursing|dietary|plant|housekeeping|laundry|activities|social|administrative)\b",
    re.I)

# ============================================================================
# COLUMNS & CENSUS
# ============================================================================

COLUMN_HEADER_RULES = [
    (re.compile(r"^budget\s*ppd$", re.I), "budget_ppd_col"),
    (re.compile(r"^budget\s*(actual|annual)?$", re.I), "budget_annual_col"),
    (re.compile(r"^actual$|^annual$|actual\s*dollars", re.I), "annual_col"),
    (re.compile(r"^monthly$|monthly\s*avg", re.I), "monthly_col"),
    (re.compile(r"^ppd$|per\s*patient", re.I), "ppd_col"),
    (re.compile(r"gl\s*code|^gl$|^account(\s*(code|number|#))?$", re.I), "gl_col"),
    (re.compile(r"^(description|label|line\s*item|account\s*name)$", re.I), "label_col"),
]

PERIOD_HEADER = re.compile(
    r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*[\s\-/']*(\d{2}|\d{4})$"
    r"|^\d{4}-\d{2}(-\d{2})?$|^\d{1,2}/\d{4}$",
    re.I)

# Flat layout default: facility | GL | label | annual | PPD | budget | budget PPD
FLAT_DEFAULT_COLUMNS = {
    "gl_col": 1, "label_col": 2, "annual_col": 3, "monthly_col": None,
    "ppd_col": 4, "budget_annual_col": 5, "budget_ppd_col": 6, "header_row": -1,
}

CENSUS_RULES = [
    (re.compile(r"patient\s*days|census\s*days|resident\s*days|total\s*days", re.I), "total_patient_days"),
    (re.compile(r"\badc\b|average\s*daily\s*census|avg\.?\s*daily\s*census", re.I), "avg_daily_census"),
    (re.compile(r"occupancy", re.I), "occupancy"),
    (re.compile(r"\bbeds?\b|licensed|\bunits\b", re.I), "beds"),
]

TOTAL_OPERATING_REVENUE = re.compile(r"^total\s*operating\s*revenue$", re.I)
CURRENT_STATE_EBITDAR = re.compile(r"^ebitdar$", re.I)
CURRENT_STATE_NET_INCOME = re.compile(r"^net\s*(operating\s*)?income$", re.I)
# Offsets from the "Total Operating Revenue" column when not labeled
CURRENT_STATE_OFFSETS = {"ebitdar": 1, "net_income": 2}
CURRENT_STATE_SKIP = re.compile(r"^total\b|grand\s*total|portfolio", re.I)


# ============================================================================
# HELPERS
# ============================================================================

def _get(row: Row, idx: Optional[int]):
    if idx is None or idx < 0 or not row or idx >= len(row):
        return None
    return row[idx]


def _row_has_gl_code(row: Row) -> bool:
    for value in row or []:
        if is_gl_code(value):
            return True
        code, _ = split_gl_label(value) if isinstance(value, str) else ("", "")
        if code:
            return True
    return False


def _first_text(row: Row) -> Tuple[int, str]:
    for idx, value in enumerate(row or []):
        if isinstance(value, str) and value.strip() and parse_number(value) is None:
            return idx, value.strip()
    return -1, ""


def strip_facility_suffix(name: str) -> str:
    return PARENTHETICAL_RE.sub(" ", name).strip()


def facility_type_from_name(name: str) -> Optional[str]:
    match = FACILITY_SHEET.search(name or "")
    return match.group(1).upper() if match else None


def categorize_line_item(gl_code: str, label: str) -> str:
    """GL prefix when a code is present, else label vocabulary; default expense"""
    if gl_code:
        category = first_match(GL_PREFIX_RULES, gl_code)
        if category:
            return category
    return first_match(LABEL_CATEGORY_RULES, label, default="expense")


def indent_level(gl_code: str, label: str) -> int:
    lower = label.lower()
    if "-" in gl_code:
        return 2
    if lower.startswith("total"):
        return 0
    return 1


# ============================================================================
# COLUMN DETECTION
# ============================================================================

def _detect_periods(row: Row) -> Dict[int, str]:
    return {
        idx: cell_text(value)
        for idx, value in enumerate(row or [])
        if PERIOD_HEADER.match(cell_text(value))
    }


def detect_columns(rows: Sequence[Row], flat: bool = False) -> Optional[Dict[str, Optional[int]]]:
    """
    Auto-detect the T13 column structure

    Order: header vocabulary in the first 20 rows; the first GL-code cell in
    30 rows with offsets inferred from it; a label column next to large
    numbers. Returns None when nothing fits.
    """
    for i, row in enumerate(rows[:20]):
        found: Dict[str, Optional[int]] = {}
        for idx, value in enumerate(row or []):
            text = cell_text(value)
            if not text:
                continue
            key = first_match(COLUMN_HEADER_RULES, text)
            if key and key not in found:
                found[key] = idx
        if "annual_col" not in found:
            continue
        gl_col = found.get("gl_col", 1 if flat else 0)
        cols = {
            "gl_col": gl_col,
            "label_col": found.get("label_col", gl_col + 1),
            "annual_col": found["annual_col"],
            "monthly_col": found.get("monthly_col"),
            "ppd_col": found.get("ppd_col"),
            "budget_annual_col": found.get("budget_annual_col"),
            "budget_ppd_col": found.get("budget_ppd_col"),
            "header_row": i,
        }
        cols["period_cols"] = _detect_periods(row)
        return cols

    for i, row in enumerate(rows[:30]):
        for idx, value in enumerate(row or []):
            if flat and idx == 0:
                continue
            if not is_gl_code(value):
                continue
            annual = None
            for j in range(idx + 2, len(row)):
                number = parse_number(row[j])
                if number:
                    annual = j
                    break
            if annual is None:
                continue
            return {
                "gl_col": idx, "label_col": idx + 1, "annual_col": annual,
                "monthly_col": annual + 1, "ppd_col": annual + 2,
                "budget_annual_col": None, "budget_ppd_col": None,
                "header_row": i - 1, "period_cols": {},
            }

    if flat:
        cols = dict(FLAT_DEFAULT_COLUMNS)
        cols["period_cols"] = {}
        return cols

    for i, row in enumerate(rows[:30]):
        label_idx, label = _first_text(row)
        if label_idx < 0:
            continue
        numeric = [j for j, v in enumerate(row) if j > label_idx and (parse_number(v) or 0) > 100
                   and not isinstance(v, str)]
        if len(numeric) >= 2:
            return {
                "gl_col": None, "label_col": label_idx, "annual_col": numeric[0],
                "monthly_col": None, "ppd_col": None,
                "budget_annual_col": None, "budget_ppd_col": None,
                "header_row": i - 1, "period_cols": {},
            }
    return None


# ============================================================================
# LINE ITEMS
# ============================================================================

def parse_line_item(row: Row, row_index: int, cols: Dict, gl_mapping: GLMapping) -> Optional[LineItem]:
    """Build a LineItem from one row, or None when the row carries no figures"""
    gl_code = ""
    label = ""
    gl_value = _get(row, cols.get("gl_col"))
    if gl_value is not None:
        if is_gl_code(gl_value):
            gl_code = cell_text(gl_value)
        elif isinstance(gl_value, str):
            gl_code, label = split_gl_label(gl_value)

    label_value = _get(row, cols.get("label_col"))
    if isinstance(label_value, str) and label_value.strip() and parse_number(label_value) is None:
        label = label_value.strip()

    entry = gl_mapping.get(gl_code) if gl_code else None
    if not label and entry is not None:
        label = entry.label
    if not gl_code and not label:
        return None

    annual = parse_number(_get(row, cols.get("annual_col")))
    monthly = parse_number(_get(row, cols.get("monthly_col")))
    ppd = parse_number(_get(row, cols.get("ppd_col")))
    if annual is None and monthly is None and ppd is None:
        return None

    category = categorize_line_item(gl_code, label)
    subcategory = None
    if entry is not None and entry.subcategory:
        subcategory = entry.subcategory
    elif gl_code:
        subcategory = subcategorize_by_gl_code(gl_code)
    if subcategory is None and category == "revenue":
        subcategory = first_match(REVENUE_SUBCATEGORY_RULES, label)

    monthly_values = {}
    for idx, period in (cols.get("period_cols") or {}).items():
        number = parse_number(_get(row, idx))
        if number is not None:
            monthly_values[period] = number

    return LineItem(
        row_index=row_index,
        gl_code=gl_code,
        label=label,
        annual_value=annual if annual is not None else 0.0,
        category=category,
        monthly_value=monthly,
        ppd_value=ppd,
        budget_annual=parse_number(_get(row, cols.get("budget_annual_col"))),
        budget_ppd=parse_number(_get(row, cols.get("budget_ppd_col"))),
        subcategory=subcategory,
        coa_code=entry.coa_code if entry is not None else None,
        is_subtotal=bool(IS_SUBTOTAL.search(label)),
        is_total=bool(IS_TOTAL.search(label)),
        indent_level=indent_level(gl_code, label),
        monthly_values=monthly_values,
    )


def summary_metric_for(label: str) -> Optional[str]:
    text = label.strip()
    if not text or NOT_SUMMARY.search(text):
        return None
    return first_match(SUMMARY_ROW_RULES, text)


# ============================================================================
# SUMMARY METRICS
# ============================================================================

def capture_summary_metrics(section: FacilitySection) -> None:
    """
    Fill summary metrics for a section

    Direct capture from dedicated summary rows (later row wins), then
    summation backfill of total revenue/expenses from category total rows,
    then EBITDA derived from EBITDAR less lease expense.
    """
    metrics = section.summary_metrics
    sources = section.metric_sources
    captured_rows = set()

    for item in section.line_items:
        metric = summary_metric_for(item.label)
        if metric is None:
            continue
        setattr(metrics, metric, item.annual_value)
        sources[metric] = "direct"
        captured_rows.add(item.row_index)

    for metric, category in (("total_revenue", "revenue"), ("total_expenses", "expense")):
        if getattr(metrics, metric) or sources.get(metric) == "direct":
            continue
        value = backfill_total(section.line_items, category, exclude_rows=captured_rows)
        if value:
            setattr(metrics, metric, value)
            sources[metric] = "derived"

    if not metrics.ebitda and sources.get("ebitda") != "direct" and metrics.ebitdar and metrics.lease_expense:
        metrics.ebitda = metrics.ebitdar - metrics.lease_expense
        sources["ebitda"] = "derived"

    if metrics.management_fee and metrics.total_revenue:
        metrics.management_fee_percent = metrics.management_fee / metrics.total_revenue


def backfill_total(items: Sequence[LineItem], category: str, exclude_rows=()) -> float:
    """
    Sum of a category's total rows (departmental subtotals if no totals)

    Pure over the line items, so re-running gives the same figure.
    """
    candidates = [i for i in items if i.category == category and i.row_index not in exclude_rows]
    totals = [i for i in candidates if i.is_total and not i.is_subtotal]
    if not totals:
        totals = [i for i in candidates if i.is_subtotal]
    return float(sum(i.annual_value for i in totals))


def extract_census(items: Sequence[LineItem]) -> Optional[CensusData]:
    census = CensusData()
    found = False
    for item in items:
        if item.category != "census":
            continue
        key = first_match(CENSUS_RULES, item.label)
        if key is None:
            continue
        value = item.annual_value or item.monthly_value or item.ppd_value
        if not value or value < 0:
            continue
        if key != "total_patient_days" and value >= 100000:
            continue
        if key == "occupancy" and value > 1:
            value = value / 100.0
        if getattr(census, key) is None:
            setattr(census, key, value)
            found = True

    if not found:
        return None
    if census.total_patient_days and not census.avg_daily_census:
        census.avg_daily_census = census.total_patient_days / 365.0
    if census.occupancy is None and census.avg_daily_census and census.beds:
        census.occupancy = census.avg_daily_census / census.beds
    return census


def build_section(name: str, facility_type: Optional[str], indexed_rows: Sequence[Tuple[int, Row]],
                  cols: Dict, gl_mapping: GLMapping, sheet_name: str) -> FacilitySection:
    items = []
    for row_index, row in indexed_rows:
        item = parse_line_item(row, row_index, cols, gl_mapping)
        if item is not None:
            items.append(item)

    start = indexed_rows[0][0] if indexed_rows else 0
    end = indexed_rows[-1][0] if indexed_rows else 0
    section = FacilitySection(
        facility_name=name,
        facility_type=facility_type,
        start_row=start,
        end_row=end,
        sheet_name=sheet_name,
        line_items=items,
        column_map={k: v for k, v in cols.items() if k != "period_cols"},
    )
    capture_summary_metrics(section)
    section.census_data = extract_census(items)
    return section


# ============================================================================
# LAYOUT (a): FLAT TABLE
# ============================================================================

def is_flat_layout(rows: Sequence[Row]) -> bool:
    """Column 0 repeats a facility name on most GL-coded rows"""
    gl_rows = 0
    named = 0
    names = set()
    for row in rows:
        if not row or len(row) < 2:
            continue
        if not _row_has_gl_code(row[1:]):
            continue
        gl_rows += 1
        first = row[0]
        if isinstance(first, str) and first.strip() and not is_gl_code(first) and parse_number(first) is None:
            named += 1
            names.add(first.strip().lower())
    if gl_rows < 2:
        return False
    return named >= 0.8 * gl_rows and len(names) <= gl_rows / 2


def parse_flat_sheet(sheet: Sheet, gl_mapping: GLMapping) -> List[FacilitySection]:
    cols = detect_columns(sheet.rows, flat=True)
    groups: Dict[str, Tuple[str, List[Tuple[int, Row]]]] = {}
    for idx, row in enumerate(sheet.rows):
        if idx <= cols["header_row"] or not row:
            continue
        first = row[0]
        if not isinstance(first, str) or not first.strip():
            continue
        key = first.strip().lower()
        if key not in groups:
            groups[key] = (first.strip(), [])
        groups[key][1].append((idx, row))

    sections = []
    for display, indexed_rows in groups.values():
        section = build_section(
            strip_facility_suffix(display) or display,
            facility_type_from_name(display),
            indexed_rows, cols, gl_mapping, sheet.name,
        )
        if section.line_items:
            sections.append(section)
    return sections


# ============================================================================
# LAYOUT (b): SECTIONED SHEETS
# ============================================================================

def _header_candidate(row: Row, cols: Dict) -> Optional[Tuple[str, Optional[str], str]]:
    if _row_has_gl_code(row):
        return None
    if parse_number(_get(row, cols.get("annual_col"))) is not None:
        return None
    _, text = _first_text(row)
    if not text or RESERVED_HEADER_WORDS.search(text):
        return None

    for pattern, kind in FACILITY_HEADER_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        if kind == "typed":
            return match.group(1).strip(), match.group(2).upper(), kind
        if kind == "labeled":
            return match.group(1).strip(), None, kind
        return text, None, kind

    if (text[0].isupper() and non_empty_count(row) <= 3 and 5 <= len(text) <= 80
            and summary_metric_for(text) is None):
        return text, None, "bare"
    return None


def find_section_headers(rows: Sequence[Row], cols: Dict) -> List[Tuple[int, str, Optional[str]]]:
    """
    Two passes: collect header candidates with their row index, then keep
    typed/labeled headers and any other candidate followed by a GL-coded
    row within the lookahead window
    """
    column_header = cols.get("header_row", -1)
    candidates = []
    for idx, row in enumerate(rows):
        if idx == column_header or not row:
            continue
        candidate = _header_candidate(row, cols)
        if candidate is not None:
            candidates.append((idx, candidate))

    gl_rows = [i for i, row in enumerate(rows) if _row_has_gl_code(row)]
    confirmed = []
    for idx, (name, facility_type, kind) in candidates:
        if kind in ("typed", "labeled"):
            confirmed.append((idx, name, facility_type))
            continue
        nxt = bisect.bisect_right(gl_rows, idx)
        if nxt < len(gl_rows) and gl_rows[nxt] <= idx + HEADER_LOOKAHEAD:
            confirmed.append((idx, name, facility_type))
    return confirmed


def parse_sectioned_sheet(sheet: Sheet, gl_mapping: GLMapping) -> List[FacilitySection]:
    rows = sheet.rows
    cols = detect_columns(rows)
    if cols is None:
        return []

    data_start = max(cols["header_row"] + 1, 0)
    headers = find_section_headers(rows, cols)

    if not headers:
        indexed = [(i, rows[i]) for i in range(data_start, len(rows)) if rows[i]]
        section = build_section(
            strip_facility_suffix(sheet.name) or sheet.name,
            facility_type_from_name(sheet.name),
            indexed, cols, gl_mapping, sheet.name,
        )
        return [section] if section.line_items else []

    sections = []
    for pos, (header_idx, name, facility_type) in enumerate(headers):
        end = headers[pos + 1][0] - 1 if pos + 1 < len(headers) else len(rows) - 1
        indexed = [(i, rows[i]) for i in range(header_idx + 1, end + 1)
                   if i >= data_start and rows[i]]
        section = build_section(name, facility_type or facility_type_from_name(sheet.name),
                                indexed, cols, gl_mapping, sheet.name)
        section.start_row = header_idx
        section.end_row = end
        if section.line_items:
            sections.append(section)
    return sections


# ============================================================================
# CURRENT STATE / 85% OCCUPANCY SUMMARY
# ============================================================================

def parse_current_state(sheet: Sheet) -> Dict[str, Dict[str, float]]:
    """
    Read authoritative revenue / EBITDAR / net income per facility

    The "Total Operating Revenue" header cell fixes the revenue column;
    EBITDAR and net income sit at fixed offsets unless the header row
    labels them.
    """
    rows = sheet.rows
    header_row = revenue_col = None
    for i, row in enumerate(rows):
        for j, value in enumerate(row or []):
            if TOTAL_OPERATING_REVENUE.match(cell_text(value)):
                header_row, revenue_col = i, j
                break
        if header_row is not None:
            break
    if header_row is None:
        return {}

    header = rows[header_row]
    ebitdar_col = revenue_col + CURRENT_STATE_OFFSETS["ebitdar"]
    net_income_col = revenue_col + CURRENT_STATE_OFFSETS["net_income"]
    for j, value in enumerate(header):
        text = cell_text(value)
        if CURRENT_STATE_EBITDAR.match(text):
            ebitdar_col = j
        elif CURRENT_STATE_NET_INCOME.match(text):
            net_income_col = j

    result: Dict[str, Dict[str, float]] = {}
    for row in rows[header_row + 1:]:
        if not row:
            continue
        name_idx, name = _first_text(row[:revenue_col])
        if name_idx < 0 or CURRENT_STATE_SKIP.search(name):
            continue
        revenue = parse_number(_get(row, revenue_col))
        if revenue is None:
            continue
        result[name] = {
            "total_revenue": revenue,
            "ebitdar": parse_number(_get(row, ebitdar_col)) or 0.0,
            "net_income": parse_number(_get(row, net_income_col)) or 0.0,
        }
    return result


def apply_current_state(sections: Sequence[FacilitySection],
                        summary: Dict[str, Dict[str, float]]) -> int:
    """Fill metrics still at zero; never overrides a non-zero value"""
    by_name: Dict[str, FacilitySection] = {}
    for section in sections:
        by_name.setdefault(section.facility_name, section)
        if section.property_name:
            by_name.setdefault(section.property_name, section)

    filled = 0
    for name, values in summary.items():
        section = find_by_name(name, by_name)
        if section is None:
            continue
        for metric, value in values.items():
            if value and not getattr(section.summary_metrics, metric):
                setattr(section.summary_metrics, metric, value)
                section.metric_sources[metric] = "current_state"
                filled += 1
    return filled


# ============================================================================
# MAIN PARSER
# ============================================================================

def _sheet_roles(sheets: Sequence[Sheet]) -> Dict[str, List[Sheet]]:
    roles = {"mapping": [], "current_state": [], "rollup": [], "targets": []}
    others = []
    for sheet in sheets:
        name = sheet.name or ""
        if is_facility_mapping_sheet(sheet):
            roles["mapping"].append(sheet)
        elif CURRENT_STATE_SHEET.search(name):
            roles["current_state"].append(sheet)
        elif ROLLUP_SHEET.search(name):
            roles["rollup"].append(sheet)
        elif GL_MAPPING_SHEET.search(name):
            continue
        else:
            others.append(sheet)

    preferred = [s for s in others if T13_SHEET.search(s.name or "") or FACILITY_SHEET.search(s.name or "")]
    roles["targets"] = preferred or others
    return roles


def parse_t13(sheets: Sequence[Sheet], gl_mapping: Optional[GLMapping] = None) -> T13ParseResult:
    """
    Parse T13 / opco review sheets into facility sections

    Args:
        sheets: Every sheet of the opco files
        gl_mapping: Optional read-only GL mapping; label-only
            categorization is used without it

    Returns:
        T13ParseResult with deduplicated facilities and warnings
    """
    gl_mapping = gl_mapping if gl_mapping is not None else EMPTY_MAPPING
    result = T13ParseResult()
    roles = _sheet_roles(sheets)

    sections: List[FacilitySection] = []
    for sheet in roles["targets"]:
        if not sheet.rows:
            continue
        if is_flat_layout(sheet.rows):
            found = parse_flat_sheet(sheet, gl_mapping)
            layout = "flat"
        else:
            found = parse_sectioned_sheet(sheet, gl_mapping)
            layout = "sectioned"
        if not found:
            result.warnings.append(f"T13: no facility data recognized in sheet '{sheet.name}'")
            logger.warning("No facility sections in sheet %s", sheet.name)
            continue
        logger.info("Sheet %s (%s layout): %d facility sections", sheet.name, layout, len(found))
        sections.extend(found)

        header_row = found[0].column_map.get("header_row")
        if header_row is not None and header_row >= 0:
            for period in _detect_periods(sheet.rows[header_row]).values():
                if period not in result.periods:
                    result.periods.append(period)

    deduped = dedupe_by_name(sections, key=lambda s: s.facility_name)
    if len(deduped) < len(sections):
        result.warnings.append(f"T13: dropped {len(sections) - len(deduped)} duplicate facility sections")
    result.facilities = deduped

    for sheet in roles["rollup"]:
        rollup_sections = parse_sectioned_sheet(sheet, gl_mapping)
        if rollup_sections:
            rollup = rollup_sections[0]
            rollup.facility_name = ROLLUP_NAME
            result.rollup = rollup
            break

    for sheet in roles["mapping"]:
        result.facility_mapping.update(parse_facility_mapping(sheet))
    if result.facility_mapping:
        matched = enrich_sections(result.facilities, result.facility_mapping)
        result.warnings.append(
            f"Facility mapping: {matched} of {len(result.facilities)} facilities matched")

    for sheet in roles["current_state"]:
        summary = parse_current_state(sheet)
        if summary:
            filled = apply_current_state(result.facilities, summary)
            logger.info("Current state sheet %s filled %d metrics", sheet.name, filled)

    for section in result.facilities:
        for item in section.line_items:
            if item.gl_code and item.gl_code not in result.gl_code_labels:
                result.gl_code_labels[item.gl_code] = item.label

    if not result.facilities:
        result.warnings.append("T13: no facilities recovered")
    return result


__all__ = [
    "parse_t13", "detect_columns", "parse_line_item", "categorize_line_item",
    "capture_summary_metrics", "backfill_total", "find_section_headers",
    "is_flat_layout", "parse_flat_sheet", "parse_sectioned_sheet",
    "parse_current_state", "apply_current_state", "summary_metric_for",
]
