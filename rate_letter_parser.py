"""
Rate Letter Parser
Extracts per-patient-day (PPD) payer rates with effective dates from
rate-letter text and rate-schedule grids
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from extraction_models import PayerRate
from sheet_utils import Row, cell_text, parse_number

logger = logging.getLogger(__name__)

_AMOUNT = r"[:\s]*\$?\s*([\d,]+\.?\d*)"

# payer -> patterns; the first matching pattern wins per payer
RATE_PATTERNS: List[Tuple[str, List[str]]] = [
    ("medicare_part_a_ppd", [
        r"medicare\s*(?:part\s*)?a\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"skilled\s+(?:nursing\s+)?(?:rate|ppd)" + _AMOUNT,
        r"\bsnf\s+(?:rate|ppd)" + _AMOUNT,
    ]),
    ("medicare_advantage_ppd", [
        r"medicare\s*(?:advantage|ma)\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"managed\s+medicare\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("managed_care_ppd", [
        r"managed\s+care\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"commercial\s*(?:rate|ppd)" + _AMOUNT,
        r"insurance\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("medicaid_ppd", [
        r"(?<!managed )medicaid\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"state\s+medicaid\s*(?:rate|ppd)" + _AMOUNT,
        r"title\s*xix\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("managed_medicaid_ppd", [
        r"managed\s+medicaid\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"medicaid\s+(?:mco|hmo)\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("private_ppd", [
        r"private\s*(?:pay)?\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"self[\s-]?pay\s*(?:rate|ppd)" + _AMOUNT,
        r"daily\s+private\s+rate" + _AMOUNT,
    ]),
    ("va_contract_ppd", [
        r"\bva\s*(?:contract)?\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"veterans?\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("hospice_ppd", [
        r"hospice\s*(?:rate|ppd|per\s*diem)" + _AMOUNT,
        r"palliative\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("ancillary_revenue_ppd", [
        r"ancillary\s*(?:rate|ppd|revenue)" + _AMOUNT,
        r"other\s+services?\s*(?:rate|ppd)" + _AMOUNT,
    ]),
    ("therapy_revenue_ppd", [
        r"therapy\s*(?:rate|ppd|revenue)" + _AMOUNT,
        r"rehab(?:ilitation)?\s*(?:rate|ppd)" + _AMOUNT,
        r"pt/ot\s*(?:rate|ppd)" + _AMOUNT,
    ]),
]
COMPILED_RATE_PATTERNS = [(payer, [re.compile(p, re.I) for p in patterns]) for payer, patterns in RATE_PATTERNS]

# Skilled and non-skilled payers count towards confidence; ancillary lines do not
CONFIDENCE_PAYERS = [payer for payer, _ in RATE_PATTERNS if not payer.startswith(("ancillary", "therapy"))]

GENERIC_RATE_PATTERNS = [
    re.compile(r"(?:per\s*diem|daily\s*rate)[:\s]*\$?([\d,]+\.?\d*)", re.I),
    re.compile(r"\$\s*([\d,]+\.?\d*)\s*(?:per\s*day|/day|daily)", re.I),
]
# context keyword -> payer, for generic amounts
GENERIC_CONTEXT = [("medicare", "medicare_part_a_ppd"), ("medicaid", "medicaid_ppd"), ("private", "private_ppd")]

DATE_PATTERNS = [
    re.compile(r"effective\s+date[:\s]*(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})", re.I),
    re.compile(r"effective[:\s]*([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})", re.I),
    re.compile(r"effective[:\s]*(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})", re.I),
    re.compile(r"as\s+of[:\s]*([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})", re.I),
    re.compile(r"beginning[:\s]*([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})", re.I),
    re.compile(r"([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})\s*(?:effective|rate|ppd)", re.I),
]
DATE_FORMATS = ["%B %d %Y", "%b %d %Y", "%m/%d/%y", "%m/%d/%Y", "%Y-%m-%d"]

FACILITY_PATTERNS = [
    re.compile(r"facility[:\s]+([A-Za-z][A-Za-z\s']+?)(?:\n|$|,)", re.I),
    re.compile(r"provider[:\s]+([A-Za-z][A-Za-z\s']+?)(?:\n|$|,)", re.I),
    re.compile(r"nursing\s+(?:home|facility|center)[:\s]+([A-Za-z][A-Za-z\s']+?)(?:\n|$|,)", re.I),
    re.compile(r"\bsnf[:\s]+([A-Za-z][A-Za-z\s']+?)(?:\n|$|,)", re.I),
]

# Table payer labels; first match wins
PAYER_LABEL_RULES = [
    (re.compile(r"medicare\s*(part\s*)?a\b|skilled\s+medicare", re.I), "medicare_part_a_ppd"),
    (re.compile(r"medicare\s*(advantage|ma)\b", re.I), "medicare_advantage_ppd"),
    (re.compile(r"managed\s+care|commercial", re.I), "managed_care_ppd"),
    (re.compile(r"managed\s+medicaid|medicaid\s+(mco|hmo)", re.I), "managed_medicaid_ppd"),
    (re.compile(r"medicaid", re.I), "medicaid_ppd"),
    (re.compile(r"private|self.?pay", re.I), "private_ppd"),
    (re.compile(r"\bva\b|veteran", re.I), "va_contract_ppd"),
    (re.compile(r"hospice", re.I), "hospice_ppd"),
    (re.compile(r"ancillary", re.I), "ancillary_revenue_ppd"),
    (re.compile(r"therapy|rehab", re.I), "therapy_revenue_ppd"),
]

MAX_PPD = 2000


# ============================================================================
# HELPERS
# ============================================================================

def parse_date(text: str) -> Optional[str]:
    """
    Parse a rate-letter date

    Args:
        text: e.g. "January 1, 2025", "Jan. 1 2025", "1/1/25", "2025-01-01"

    Returns:
        ISO date string, or None when no format matches
    """
    cleaned = re.sub(r"[,.]", " ", text or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    # Slashes and dashes survive the cleanup above
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def extract_effective_date(text: str) -> Optional[str]:
    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            parsed = parse_date(match.group(1))
            if parsed:
                return parsed
    return None


def extract_facility_name(text: str, fallback_facilities: Sequence[str] = ()) -> str:
    for pattern in FACILITY_PATTERNS:
        match = pattern.search(text)
        if match:
            name = match.group(1).strip()
            if 3 < len(name) < 100:
                return name
    return fallback_facilities[0] if fallback_facilities else "Unknown Facility"


def _ppd(raw: str) -> Optional[float]:
    value = parse_number(raw)
    if value is None or not 0 < value < MAX_PPD:
        return None
    return value


# ============================================================================
# TEXT EXTRACTION
# ============================================================================

def extract_rates_from_text(text: str, document_id: str,
                            fallback_facilities: Sequence[str] = ()) -> List[PayerRate]:
    """
    Extract payer PPD rates from rate-letter text

    Args:
        text: Plain text of the letter
        document_id: Source document identifier
        fallback_facilities: Facility names to use when the letter names none

    Returns:
        A single consolidated PayerRate, or an empty list when no rate is found
    """
    if not text:
        return []

    rates: Dict[str, float] = {}
    for payer, patterns in COMPILED_RATE_PATTERNS:
        for pattern in patterns:
            match = pattern.search(text)
            value = _ppd(match.group(1)) if match else None
            if value is not None:
                rates[payer] = value
                break

    for pattern in GENERIC_RATE_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_number(match.group(1))
            if value is None or not 50 < value < 1500:
                continue
            context = text[max(0, match.start() - 100):match.end() + 100].lower()
            for keyword, payer in GENERIC_CONTEXT:
                if keyword in context and payer not in rates:
                    rates[payer] = value
                    break

    if not rates:
        logger.debug("No payer rates found in document %s", document_id)
        return []

    found = sum(1 for payer in CONFIDENCE_PAYERS if payer in rates)
    return [PayerRate(
        facility_name=extract_facility_name(text, fallback_facilities),
        document_id=document_id,
        source="rate_letter",
        confidence=min(0.95, 0.6 + 0.05 * found),
        effective_date=extract_effective_date(text),
        rates=rates,
    )]


# ============================================================================
# TABLE EXTRACTION
# ============================================================================

def _detect_rate_columns(grid: Sequence[Row]) -> Tuple[int, int, int, int]:
    """(header row, payer col, rate col, date col); rate col -1 when absent"""
    for i, row in enumerate(grid[:10]):
        payer_col = rate_col = date_col = -1
        for j, value in enumerate(row or []):
            label = cell_text(value).lower()
            if not label:
                continue
            if "effective" in label or "date" in label:
                date_col = j
            elif "rate" in label or "ppd" in label or "per diem" in label:
                rate_col = j
            elif "payer" in label or "payor" in label or "type" in label:
                payer_col = j
        if rate_col >= 0:
            return i, payer_col, rate_col, date_col
    return -1, -1, -1, -1


def extract_rates_from_table(grid: Sequence[Row], document_id: str,
                             facilities_detected: Sequence[str] = ()) -> List[PayerRate]:
    """
    Extract payer rates from a rate-schedule grid

    Rows sharing an effective date are consolidated into one PayerRate.
    Without a rate column the grid is flattened and read as text.
    """
    header_row, payer_col, rate_col, date_col = _detect_rate_columns(grid)
    if rate_col < 0:
        text = "\n".join(" ".join(cell_text(v) for v in (row or [])) for row in grid)
        return extract_rates_from_text(text, document_id, facilities_detected)

    facility = facilities_detected[0] if facilities_detected else "Unknown Facility"
    by_date: Dict[Optional[str], PayerRate] = {}
    for row in grid[header_row + 1:]:
        row = row or []
        value = parse_number(row[rate_col]) if rate_col < len(row) else None
        if value is None or not 0 < value <= MAX_PPD:
            continue
        label = cell_text(row[payer_col]) if 0 <= payer_col < len(row) else ""
        payer = next((p for pattern, p in PAYER_LABEL_RULES if pattern.search(label)), None)
        if payer is None:
            payer = re.sub(r"\W+", "_", label.lower()).strip("_") or "unspecified"

        raw_date = row[date_col] if 0 <= date_col < len(row) else None
        effective = parse_date(cell_text(raw_date)) if raw_date is not None else None

        rate = by_date.get(effective)
        if rate is None:
            rate = PayerRate(facility_name=facility, document_id=document_id, source="schedule",
                             confidence=0.8, effective_date=effective)
            by_date[effective] = rate
        rate.rates[payer] = value

    return list(by_date.values())


__all__ = [
    "extract_rates_from_text", "extract_rates_from_table",
    "extract_effective_date", "extract_facility_name", "parse_date",
]
