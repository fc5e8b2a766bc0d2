"""
Facility Mapping Resolver
Reads the opco "Mapping" sheet (opco alias -> property, beds, lease/owned,
business line) and resolves name variants across files
"""

import logging
import re
from typing import Dict, Optional, Sequence

from extraction_models import CensusData, FacilityMappingEntry, FacilitySection
from sheet_utils import Sheet, cell_text, find_by_name, find_header_col, parse_number

logger = logging.getLogger(__name__)

MAPPING_SHEET_NAME = re.compile(r"mapping", re.I)

HEADER_OPCO = re.compile(r"opco|operating\s*company|entity", re.I)
HEADER_PROPERTY = re.compile(r"property|facility\s*name|^facility$", re.I)
HEADER_BEDS = re.compile(r"beds|units", re.I)
HEADER_LEASE = re.compile(r"lease|owned", re.I)
HEADER_BUSINESS_LINE = re.compile(r"business\s*line|service\s*line|^bl$", re.I)
HEADER_STATE_BL = re.compile(r"state", re.I)
HEADER_GROUP = re.compile(r"group", re.I)


def _normalize_lease_owned(text: str) -> str:
    lower = text.lower()
    if "lease" in lower:
        return "Leased"
    if "own" in lower:
        return "Owned"
    return text


def _detect_header(rows) -> Optional[Dict[str, int]]:
    for i, row in enumerate(rows[:15]):
        opco = find_header_col(row, HEADER_OPCO)
        if opco < 0:
            continue
        beds = find_header_col(row, HEADER_BEDS)
        lease = find_header_col(row, HEADER_LEASE)
        if beds < 0 and lease < 0:
            continue
        prop = -1
        for idx, value in enumerate(row):
            if idx != opco and HEADER_PROPERTY.search(cell_text(value)):
                prop = idx
                break
        return {
            "row": i,
            "opco": opco,
            "property": prop,
            "beds": beds,
            "lease": lease,
            "business_line": find_header_col(row, HEADER_BUSINESS_LINE),
            "state_bl": find_header_col(row, HEADER_STATE_BL),
            "group": find_header_col(row, HEADER_GROUP),
        }
    return None


def is_facility_mapping_sheet(sheet: Sheet) -> bool:
    return bool(MAPPING_SHEET_NAME.search(sheet.name or "")) and _detect_header(sheet.rows) is not None


def parse_facility_mapping(sheet: Sheet) -> Dict[str, FacilityMappingEntry]:
    """
    Parse a facility Mapping sheet

    Args:
        sheet: Sheet with opco/property/beds/lease-owned columns

    Returns:
        Entries keyed by opco alias (several aliases may share a property)
    """
    header = _detect_header(sheet.rows)
    if header is None:
        return {}

    def _text(row, key):
        idx = header[key]
        return cell_text(row[idx]) if 0 <= idx < len(row) else ""

    mapping: Dict[str, FacilityMappingEntry] = {}
    for row in sheet.rows[header["row"] + 1:]:
        if not row:
            continue
        opco = _text(row, "opco")
        if not opco or opco.lower().startswith("total"):
            continue
        beds_idx = header["beds"]
        beds = parse_number(row[beds_idx]) if 0 <= beds_idx < len(row) else None
        mapping[opco] = FacilityMappingEntry(
            opco_name=opco,
            property_name=_text(row, "property") or opco,
            beds=beds or 0.0,
            lease_owned=_normalize_lease_owned(_text(row, "lease")),
            business_line=_text(row, "business_line"),
            state_bl=_text(row, "state_bl"),
            group=_text(row, "group"),
        )

    logger.info("Facility mapping: %d opco aliases from '%s'", len(mapping), sheet.name)
    return mapping


def resolve_facility(name: str, mapping: Dict[str, FacilityMappingEntry]) -> Optional[FacilityMappingEntry]:
    """Resolve an opco alias or property name: exact, then truncated-prefix fuzzy"""
    if not mapping:
        return None
    entry = find_by_name(name, mapping)
    if entry is not None:
        return entry
    by_property = {e.property_name: e for e in mapping.values()}
    return find_by_name(name, by_property)


def enrich_sections(sections: Sequence[FacilitySection],
                    mapping: Dict[str, FacilityMappingEntry]) -> int:
    """
    Attach property name, lease/owned status, business line and beds

    Returns:
        Number of sections matched to a mapping entry
    """
    matched = 0
    for section in sections:
        entry = resolve_facility(section.facility_name, mapping)
        if entry is None:
            continue
        matched += 1
        section.property_name = entry.property_name
        section.lease_owned = entry.lease_owned or None
        section.business_line = entry.business_line or None
        if entry.beds > 0:
            if section.census_data is None:
                section.census_data = CensusData()
            if not section.census_data.beds:
                section.census_data.beds = entry.beds
    return matched


__all__ = [
    "is_facility_mapping_sheet", "parse_facility_mapping",
    "resolve_facility", "enrich_sections",
]
