"""
Sheet Grid Utilities
Cell coercion, GL code detection, facility name normalization and
ordered rule tables shared by every smart-excel parser
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

Cell = Union[str, int, float, None]
Row = List[Cell]

T = TypeVar("T")

# ============================================================================
# GRID TYPES
# ============================================================================

@dataclass
class Sheet:
    """A named, read-only grid of cells (0-based rows and columns)"""
    name: str
    rows: List[Row] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def cell(self, row_idx: int, col_idx: int) -> Cell:
        if row_idx < 0 or row_idx >= len(self.rows):
            return None
        row = self.rows[row_idx] or []
        if col_idx < 0 or col_idx >= len(row):
            return None
        return row[col_idx]

    def is_empty(self) -> bool:
        return not any(not is_blank(c) for row in self.rows for c in (row or []))


@dataclass
class Workbook:
    """One input file: an identifier, its filename and its sheets"""
    document_id: str
    filename: str
    sheets: List[Sheet] = field(default_factory=list)


# ============================================================================
# PATTERNS
# ============================================================================

GL_CODE_RE = re.compile(r"^\d{6}(-\d{2})?$")
GL_CODE_SEARCH_RE = re.compile(r"\b(\d{6}(?:-\d{2})?)\b")
GL_LABEL_SPLIT_RE = re.compile(r"^\s*(\d{6}(?:-\d{2})?)(?![\d.,])\s*[-–:]?\s*(.*)$")
PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)\s*")

# Facility name tokens seen across Cascadia workbooks
KNOWN_FACILITY_TOKENS = [
    "gateway", "ridgeview", "firwood", "bridgecreek", "brighton", "liberty",
    "cedar", "gresham", "sapphire", "fernhill", "myrtle", "gracelen",
    "rose city", "valley view", "tigard", "woodway", "mckenzie", "sweet home",
    "amber", "butte", "belmont", "rivers edge", "sheridan", "west wind",
]


# ============================================================================
# CELL COERCION
# ============================================================================

def is_blank(value: Cell) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def cell_text(value: Cell) -> str:
    """Return a trimmed string for any cell (empty string for blanks)"""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_number(value: Cell) -> Optional[float]:
    """
    Parse a numeric cell

    Strips currency symbols, commas and spaces; "(1,234)" is negative.

    Args:
        value: Raw cell value

    Returns:
        The number, or None when the cell is not numeric
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return float(value)

    text = str(value).strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    text = text.replace("$", "").replace(",", "").replace(" ", "")
    if text.endswith("%"):
        text = text[:-1]
    if text.startswith("-"):
        negative = not negative
        text = text[1:]

    try:
        number = float(text)
    except ValueError:
        return None
    return -number if negative else number


def is_gl_code(value: Cell) -> bool:
    return bool(GL_CODE_RE.match(cell_text(value)))


def normalize_gl_code(value: Cell) -> str:
    """Trim a GL code, extracting the 6(+2) digit code from noisy text"""
    text = cell_text(value)
    if GL_CODE_RE.match(text):
        return text
    match = GL_CODE_SEARCH_RE.search(text)
    return match.group(1) if match else text


def split_gl_label(value: Cell) -> Tuple[str, str]:
    """Split a combined "400100 - Medicare Revenue" cell into code and label"""
    text = cell_text(value)
    match = GL_LABEL_SPLIT_RE.match(text)
    if match:
        return match.group(1), match.group(2).strip()
    return "", text


def count_gl_codes(rows: Sequence[Row], max_rows: Optional[int] = None) -> int:
    limit = len(rows) if max_rows is None else min(max_rows, len(rows))
    return sum(1 for row in rows[:limit] for c in (row or []) if is_gl_code(c))


def sheet_text(rows: Sequence[Row], max_rows: int = 50) -> str:
    """Lower-cased join of the first rows, used for vocabulary scoring"""
    parts = []
    for row in rows[:max_rows]:
        for c in row or []:
            if not is_blank(c):
                parts.append(cell_text(c))
    return " ".join(parts).lower()


def non_empty_count(row: Row) -> int:
    return sum(1 for c in (row or []) if not is_blank(c) and c != 0)


# ============================================================================
# NAME MATCHING
# ============================================================================

def normalize_name(name: str) -> str:
    """Case- and whitespace-insensitive key used for dedup and matching"""
    return re.sub(r"\s+", " ", (name or "").strip().lower())


def matching_key(name: str) -> str:
    """Normalized name with parentheticals such as "(Opco)" removed"""
    return normalize_name(PARENTHETICAL_RE.sub(" ", name or ""))


def find_by_name(name: str, table: Dict[str, T],
                 prefix_len: int = 10, fuzzy_len: int = 8) -> Optional[T]:
    """
    Look up a facility by name: exact, then truncated prefix, then fuzzy

    Args:
        name: Facility name to resolve
        table: Candidates keyed by display name
        prefix_len: Characters compared for the truncated-prefix match
        fuzzy_len: Prefix length for the contains-either-way fuzzy match

    Returns:
        The matched value or None
    """
    key = matching_key(name)
    if not key:
        return None

    keyed = [(matching_key(k), v) for k, v in table.items()]

    for cand, value in keyed:
        if cand == key:
            return value

    prefix = key[:prefix_len]
    for cand, value in keyed:
        if cand and cand[:prefix_len] == prefix:
            return value

    if len(key) < 4:
        return None
    for cand, value in keyed:
        if len(cand) < 4:
            continue
        if cand[:fuzzy_len] in key or key[:fuzzy_len] in cand:
            return value

    return None


def dedupe_by_name(items: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """Keep the first item per normalized name"""
    seen = set()
    result = []
    for item in items:
        norm = normalize_name(key(item))
        if norm in seen:
            continue
        seen.add(norm)
        result.append(item)
    return result


def is_facility_named(sheet_name: str) -> bool:
    lower = sheet_name.lower()
    return any(token in lower for token in KNOWN_FACILITY_TOKENS)


# ============================================================================
# RULE TABLES
# ============================================================================

def first_match(rules: Sequence[Tuple[Any, T]], text: str, default: Optional[T] = None) -> Optional[T]:
    """
    Evaluate (pattern, result) rules top to bottom; the first match wins

    A rule's pattern may be a compiled regex or any callable predicate.
    """
    for predicate, result in rules:
        if hasattr(predicate, "search"):
            if predicate.search(text):
                return result
        elif predicate(text):
            return result
    return default


def find_header_col(row: Row, pattern, exclude=None) -> int:
    """Index of the first cell in a row matching a header pattern, or -1"""
    for idx, value in enumerate(row or []):
        text = cell_text(value).lower()
        if not text:
            continue
        if pattern.search(text) and not (exclude and exclude.search(text)):
            return idx
    return -1


__all__ = [
    "Cell", "Row", "Sheet", "Workbook",
    "GL_CODE_RE", "KNOWN_FACILITY_TOKENS",
    "is_blank", "cell_text", "parse_number", "is_gl_code", "normalize_gl_code",
    "split_gl_label", "count_gl_codes", "sheet_text", "non_empty_count",
    "normalize_name", "matching_key", "find_by_name", "dedupe_by_name",
    "is_facility_named", "first_match", "find_header_col",
]
