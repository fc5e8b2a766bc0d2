"""
GL Mapping Parser
Builds a read-only lookup from general-ledger code to canonical category
from a mapping/crosswalk sheet
"""

import logging
import re
from types import MappingProxyType
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from extraction_models import GLMappingEntry
from sheet_utils import (
    Sheet, cell_text, find_header_col, is_gl_code, normalize_gl_code,
)

logger = logging.getLogger(__name__)

MAPPING_SHEET = re.compile(r"mapping|map|crosswalk", re.I)

HEADER_GL_CODE = re.compile(r"gl\s*code|account\s*(code|number|#)|line\s*item", re.I)
HEADER_LABEL = re.compile(r"description|label|name|account\s*name", re.I)
HEADER_CATEGORY = re.compile(r"category|type|class|mapping", re.I)
HEADER_FACILITY = re.compile(r"\(opco\)", re.I)
NOT_CATEGORY = re.compile(r"facility", re.I)

# (3-digit prefix, category) first, then (1-digit prefix, category)
GL_PREFIX_CATEGORIES: List[Tuple[str, str]] = [
    ("400", "SNF Revenue"),
    ("420", "ALF/RCF Revenue"),
    ("421", "ALF Revenue"),
    ("422", "IL Revenue"),
    ("423", "Memory Care Revenue"),
    ("4", "Revenue"),
    ("5", "Operating Expense"),
    ("600", "Administration"),
    ("610", "Ancillary"),
    ("611", "Therapy"),
    ("612", "HMO"),
    ("613", "Private Ancillary"),
    ("6", "Expense"),
    ("7", "Non-Operating"),
    ("8", "Below-the-Line"),
]

GL_SUBCATEGORIES = {
    "4001": "medicare_revenue",
    "4002": "medicaid_revenue",
    "4004": "managed_care_revenue",
    "4005": "private_revenue",
    "4006": "reserve_bed_revenue",
    "4201": "rcf_medicaid_revenue",
    "4202": "alf_medicaid_revenue",
    "4204": "alf_private_revenue",
    "4221": "il_revenue",
    "4231": "mc_medicaid_revenue",
    "4234": "mc_private_revenue",
    "6000": "administration",
    "6003": "contract_labor",
}


def categorize_by_gl_code(gl_code: str) -> str:
    """Canonical category for a code from its numeric prefix"""
    digits = gl_code[:3]
    for prefix, category in GL_PREFIX_CATEGORIES:
        if len(prefix) == 3 and digits == prefix:
            return category
    for prefix, category in GL_PREFIX_CATEGORIES:
        if len(prefix) == 1 and gl_code.startswith(prefix):
            return category
    return "Unknown"


def subcategorize_by_gl_code(gl_code: str) -> Optional[str]:
    return GL_SUBCATEGORIES.get(gl_code[:4])


class GLMapping:
    """
    Immutable GL code -> GLMappingEntry table

    Built once per run before any consuming parser, then shared read-only.
    Lookups fall back from a dash-suffixed code to its base code.
    """

    def __init__(self, entries: Optional[Dict[str, GLMappingEntry]] = None, source_sheet: str = ""):
        self._entries = MappingProxyType(dict(entries or {}))
        self.source_sheet = source_sheet

    @property
    def entries(self):
        return self._entries

    def get(self, gl_code: str) -> Optional[GLMappingEntry]:
        if not gl_code:
            return None
        entry = self._entries.get(gl_code)
        if entry is None and "-" in gl_code:
            entry = self._entries.get(gl_code.split("-")[0])
        return entry

    def __contains__(self, gl_code) -> bool:
        return self.get(gl_code) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __bool__(self) -> bool:
        return len(self._entries) > 0

    def to_dict(self) -> Dict[str, dict]:
        return {code: entry.to_dict() for code, entry in self._entries.items()}


EMPTY_MAPPING = GLMapping()


# ============================================================================
# COLUMN DETECTION
# ============================================================================

def _detect_columns(rows: Sequence[Sequence]) -> Dict[str, object]:
    """
    Locate code/label/category/facility columns

    Header vocabulary in the first 10 rows wins; then content detection
    (a GL code cell followed by text); finally col 0 / col 1 from row 1.
    """
    for i, row in enumerate(rows[:10]):
        gl_col = find_header_col(row, HEADER_GL_CODE)
        if gl_col < 0:
            continue
        label_col = find_header_col(row, HEADER_LABEL)
        category_col = -1
        for idx, value in enumerate(row or []):
            text = cell_text(value).lower()
            if idx in (gl_col, label_col) or not text:
                continue
            if HEADER_CATEGORY.search(text) and not NOT_CATEGORY.search(text):
                category_col = idx
                break
        facility_cols = {
            idx: cell_text(value)
            for idx, value in enumerate(row or [])
            if HEADER_FACILITY.search(cell_text(value))
        }
        return {
            "gl_col": gl_col,
            "label_col": label_col if label_col >= 0 else gl_col + 1,
            "category_col": category_col,
            "facility_cols": facility_cols,
            "start_row": i + 1,
        }

    for i, row in enumerate(rows[:30]):
        for idx, value in enumerate(row or []):
            if is_gl_code(value):
                nxt = row[idx + 1] if idx + 1 < len(row) else None
                if isinstance(nxt, str) and nxt.strip():
                    return {"gl_col": idx, "label_col": idx + 1, "category_col": -1,
                            "facility_cols": {}, "start_row": i}

    return {"gl_col": 0, "label_col": 1, "category_col": -1, "facility_cols": {}, "start_row": 1}


def _select_sheet(sheets: Sequence[Sheet]) -> Optional[Sheet]:
    for sheet in sheets:
        if MAPPING_SHEET.search(sheet.name or ""):
            return sheet
    return sheets[0] if sheets else None


# ============================================================================
# MAIN PARSER
# ============================================================================

def parse_gl_mapping(sheets: Sequence[Sheet]) -> GLMapping:
    """
    Parse a GL mapping workbook

    Args:
        sheets: Sheets of the file classified as gl_mapping

    Returns:
        A GLMapping; empty (never an error) when nothing qualifies
    """
    sheet = _select_sheet(sheets)
    if sheet is None or not sheet.rows:
        logger.warning("No GL mapping sheet found")
        return EMPTY_MAPPING

    cols = _detect_columns(sheet.rows)
    gl_col = cols["gl_col"]
    label_col = cols["label_col"]
    category_col = cols["category_col"]
    facility_cols = cols["facility_cols"]

    entries: Dict[str, GLMappingEntry] = {}
    for row in sheet.rows[cols["start_row"]:]:
        if not row or gl_col >= len(row):
            continue
        raw = cell_text(row[gl_col])
        if not raw:
            continue
        code = normalize_gl_code(raw)
        if not is_gl_code(code):
            continue

        label = cell_text(row[label_col]) if label_col < len(row) else ""
        category = cell_text(row[category_col]) if 0 <= category_col < len(row) else ""
        facility_mappings = tuple(
            (name, cell_text(row[idx]))
            for idx, name in facility_cols.items()
            if idx < len(row) and cell_text(row[idx])
        )

        entry = GLMappingEntry(
            gl_code=code,
            label=label,
            category=category or categorize_by_gl_code(code),
            subcategory=subcategorize_by_gl_code(code),
            coa_code=category or None,
            facility_mappings=facility_mappings,
        )
        entries[code] = entry

        base = code.split("-")[0]
        if base != code and base not in entries:
            entries[base] = entry

    logger.info("GL mapping: %d entries from '%s'", len(entries), sheet.name)
    return GLMapping(entries, source_sheet=sheet.name)


__all__ = [
    "GLMapping", "EMPTY_MAPPING", "parse_gl_mapping",
    "categorize_by_gl_code", "subcategorize_by_gl_code",
]
