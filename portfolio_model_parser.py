"""
Portfolio Model Parser
Parses multi-scenario portfolio workbooks: scenario sheets ("Current State",
"85% Occupancy", ...) with entity-group rollups, plus individual facility
sheets handed to the T13 parser
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from extraction_models import (
    PortfolioEntityGroup, PortfolioFinancials, PortfolioModelResult, PortfolioScenario,
)
from gl_mapping_parser import GLMapping
from sheet_utils import Row, Sheet, cell_text, parse_number
from t13_parser import parse_t13

logger = logging.getLogger(__name__)

# ============================================================================
# PATTERNS
# ============================================================================

SCENARIO_SHEETS = [
    (re.compile(r"current\s*state", re.I), "Current State"),
    (re.compile(r"85%?\s*occupancy", re.I), "85% Occupancy"),
    (re.compile(r"stabilized", re.I), "Stabilized"),
    (re.compile(r"pro\s*forma", re.I), "Pro Forma"),
]
ROLLUP_SHEET = re.compile(r"rollup|roll-up|consolidated", re.I)
MAPPING_SHEET = re.compile(r"mapping|map|crosswalk", re.I)

ENTITY_GROUP = re.compile(r"^(OR|WA|ID|MT|CA|AZ)\s*-\s*(.+)", re.I)
STANDALONE_GROUP = re.compile(r"^(snf\s*-?\s*owned|leased|al\s*/\s*il|snc|mixed)", re.I)

HEADER_ANNUAL = re.compile(r"^(annual|actual|total)$", re.I)
HEADER_MONTHLY = re.compile(r"^monthly", re.I)
HEADER_PPD = re.compile(r"^ppd|per\s*patient", re.I)
HEADER_LABEL = re.compile(r"^(description|label|item|category)$", re.I)

# First match wins per label
FINANCIAL_LABELS = [
    (re.compile(r"^total\s*(operating\s*|patient\s*service\s*)?revenue", re.I), "total_revenue"),
    (re.compile(r"^total\s*(operating\s*)?expenses?", re.I), "total_expenses"),
    (re.compile(r"^ebitdar\b", re.I), "ebitdar"),
    (re.compile(r"^ebitda(?!r)\b", re.I), "ebitda"),
    (re.compile(r"management\s*fee", re.I), "management_fee"),
    (re.compile(r"lease|rent\s*expense", re.I), "lease_expense"),
]
GRAND_TOTAL = re.compile(r"grand\s*total|portfolio\s*total|total\s*portfolio", re.I)
TOTAL_EBITDAR = re.compile(r"total.*ebitdar|ebitdar.*total|^ebitdar$", re.I)
TOTAL_EBITDA = re.compile(r"total.*ebitda(?!r)|ebitda(?!r).*total|^ebitda$", re.I)

MIN_FACILITY_SHEET_ROWS = 10


# ============================================================================
# COLUMN DETECTION
# ============================================================================

def detect_scenario_columns(rows: Sequence[Row]) -> Optional[Dict[str, Optional[int]]]:
    """
    Locate label/annual/monthly/PPD columns of a scenario sheet

    Header vocabulary in the first 15 rows wins; otherwise the first row in
    20 with both a text cell and a number above 1,000 fixes the columns.
    """
    for i, row in enumerate(rows[:15]):
        texts = [cell_text(v).lower() for v in (row or [])]
        annual = next((j for j, t in enumerate(texts) if HEADER_ANNUAL.match(t)), -1)
        if annual < 0:
            continue
        label = next((j for j, t in enumerate(texts) if HEADER_LABEL.match(t)), -1)
        return {
            "label_col": label if label >= 0 else max(annual - 1, 0),
            "annual_col": annual,
            "monthly_col": next((j for j, t in enumerate(texts) if HEADER_MONTHLY.match(t)), None),
            "ppd_col": next((j for j, t in enumerate(texts) if HEADER_PPD.match(t)), None),
            "data_start": i + 1,
        }

    for i, row in enumerate(rows[:20]):
        row = row or []
        text_cols = [j for j, v in enumerate(row) if isinstance(v, str) and len(v.strip()) > 3]
        number_cols = [j for j, v in enumerate(row)
                       if isinstance(v, (int, float)) and not isinstance(v, bool) and abs(v) > 1000]
        if text_cols and number_cols:
            return {"label_col": text_cols[-1], "annual_col": number_cols[0],
                    "monthly_col": None, "ppd_col": None, "data_start": i}
    return None


def _value(row: Row, col: Optional[int]) -> Optional[float]:
    if col is None or col >= len(row or []):
        return None
    value = row[col]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return parse_number(value) if isinstance(value, str) else None
    return float(value)


# ============================================================================
# ENTITY GROUPS
# ============================================================================

def find_entity_groups(rows: Sequence[Row], cols: Dict) -> List[Dict]:
    """Entity-group header rows and the data rows each one spans"""
    starts = []
    for i in range(cols["data_start"], len(rows)):
        row = rows[i] or []
        label = cell_text(row[cols["label_col"]]) if cols["label_col"] < len(row) else ""
        if not label:
            continue
        if ENTITY_GROUP.match(label):
            starts.append((i, label))
        elif STANDALONE_GROUP.match(label):
            filled = sum(1 for c in row if c not in (None, "", 0))
            if filled <= 3:
                starts.append((i, label))

    groups = []
    for k, (row_idx, name) in enumerate(starts):
        end = starts[k + 1][0] - 1 if k + 1 < len(starts) else len(rows) - 1
        groups.append({"name": name, "start": row_idx + 1, "end": end})
    return groups


def extract_financials(rows: Sequence[Row], start: int, end: int, cols: Dict) -> PortfolioFinancials:
    """Revenue/expense breakdowns and summary lines between two rows (inclusive)"""
    financials = PortfolioFinancials()
    in_revenue = True
    for row in rows[start:end + 1]:
        row = row or []
        label = cell_text(row[cols["label_col"]]) if cols["label_col"] < len(row) else ""
        if not label:
            continue
        annual = _value(row, cols["annual_col"]) or 0.0
        field_name = next((f for pattern, f in FINANCIAL_LABELS if pattern.search(label)), None)

        if field_name == "total_revenue":
            financials.total_revenue = annual
            in_revenue = False
        elif field_name == "total_expenses":
            in_revenue = False
        elif field_name is not None:
            setattr(financials, field_name, annual)
        elif annual:
            item = {
                "label": label,
                "annual": annual,
                "monthly": _value(row, cols["monthly_col"]),
                "ppd": _value(row, cols["ppd_col"]),
            }
            (financials.revenue_breakdown if in_revenue else financials.expense_breakdown).append(item)

    if financials.total_revenue > 0:
        if financials.ebitdar:
            financials.ebitdar_margin = financials.ebitdar / financials.total_revenue
        if financials.ebitda:
            financials.ebitda_margin = financials.ebitda / financials.total_revenue
    return financials


def extract_overall_totals(rows: Sequence[Row], cols: Dict) -> Optional[PortfolioFinancials]:
    financials = PortfolioFinancials()
    found = False
    label_col, annual_col = cols["label_col"], cols["annual_col"]

    for row in rows:
        row = row or []
        label = cell_text(row[label_col]) if label_col < len(row) else ""
        if label and GRAND_TOTAL.search(label):
            financials.total_revenue = _value(row, annual_col) or 0.0
            found = True
            break

    for row in rows[max(len(rows) - 30, 0):]:
        row = row or []
        label = cell_text(row[label_col]) if label_col < len(row) else ""
        if not label:
            continue
        if TOTAL_EBITDAR.search(label):
            financials.ebitdar = _value(row, annual_col) or 0.0
            found = True
        elif TOTAL_EBITDA.search(label):
            financials.ebitda = _value(row, annual_col) or 0.0
            found = True
    return financials if found else None


def parse_scenario_sheet(sheet: Sheet, scenario_name: str) -> Optional[PortfolioScenario]:
    if len(sheet.rows) < 5:
        return None
    cols = detect_scenario_columns(sheet.rows)
    if cols is None:
        return None

    groups = [
        PortfolioEntityGroup(g["name"], extract_financials(sheet.rows, g["start"], g["end"], cols))
        for g in find_entity_groups(sheet.rows, cols)
    ]
    return PortfolioScenario(
        name=scenario_name,
        sheet_name=sheet.name,
        entity_groups=groups,
        totals=extract_overall_totals(sheet.rows, cols) or PortfolioFinancials(),
    )


# ============================================================================
# MAIN PARSER
# ============================================================================

def _is_special(sheet: Sheet) -> bool:
    name = sheet.name or ""
    return (any(p.search(name) for p, _ in SCENARIO_SHEETS)
            or bool(ROLLUP_SHEET.search(name)) or bool(MAPPING_SHEET.search(name)))


def parse_portfolio_model(sheets: Sequence[Sheet],
                          gl_mapping: Optional[GLMapping] = None) -> PortfolioModelResult:
    """
    Parse a portfolio model workbook

    Args:
        sheets: Sheets of every file classified as portfolio_model
        gl_mapping: Optional GL mapping for the facility sheets

    Returns:
        PortfolioModelResult with scenarios and individual facilities
    """
    result = PortfolioModelResult()

    for pattern, name in SCENARIO_SHEETS:
        sheet = next((s for s in sheets if pattern.search(s.name or "")), None)
        if sheet is None:
            continue
        scenario = parse_scenario_sheet(sheet, name)
        if scenario is not None:
            result.scenarios.append(scenario)

    if not result.scenarios:
        rollup = next((s for s in sheets if ROLLUP_SHEET.search(s.name or "")), None)
        if rollup is not None:
            scenario = parse_scenario_sheet(rollup, "Rollup")
            if scenario is not None:
                result.scenarios.append(scenario)

    facility_sheets = [s for s in sheets if not _is_special(s) and s.row_count > MIN_FACILITY_SHEET_ROWS]
    if facility_sheets:
        t13 = parse_t13(facility_sheets, gl_mapping)
        result.individual_facilities = list(t13.facilities)
        result.warnings.extend(t13.warnings)

    if not result.scenarios and not result.individual_facilities:
        result.warnings.append("No scenario sheets or facility data found in portfolio model")
    logger.info("Portfolio model: %d scenarios, %d facilities",
                len(result.scenarios), len(result.individual_facilities))
    return result


__all__ = [
    "parse_portfolio_model", "parse_scenario_sheet", "detect_scenario_columns",
    "find_entity_groups", "extract_financials",
]
