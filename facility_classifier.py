"""
Facility Classifier
Assigns each facility a property type, valuation method and applicable
rate from asset valuation evidence, falling back to P&L heuristics
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cascadia_valuation import get_cap_rate, get_leased_multiplier
from extraction_models import (
    ALF_SNC_OWNED, EBIT_MULTIPLIER, EBITDAR_CAP_RATE, LEASED, SNF_OWNED,
    AssetValuationEntry, FacilityClassification, FacilityMappingEntry, FacilitySection,
)
from facility_mapping import resolve_facility
from sheet_utils import dedupe_by_name, find_by_name

logger = logging.getLogger(__name__)

# Annotations may be underscore-joined (SNF_AL_IL); tokens are bounded
# by non-letters
ALF_ANNOTATION = re.compile(r"(?<![a-z])(alf|al[_/\s]?il|mc|il|snc)(?![a-z])", re.I)
SNF_ANNOTATION = re.compile(r"(?<![a-z])snf(?![a-z])", re.I)
LEASE_EXPENSE = re.compile(r"lease|rent\s*expense|occupancy\s*cost", re.I)
PROPERTY_TAX = re.compile(r"property\s*tax|real\s*estate\s*tax", re.I)
ALF_REVENUE_CODE = re.compile(r"^42\d")
SNF_REVENUE_CODE = re.compile(r"^400")
SNC_LABEL = re.compile(r"specific\s*needs?|\bsnc\b", re.I)
SNC_PERCENT_LABEL = re.compile(r"snc\s*%|specific\s*needs?.*%|snc\s*percent", re.I)
BEDS_LABEL = re.compile(r"beds|licensed", re.I)

CONFIDENCE_VALUATION_MATCH = 0.95
CONFIDENCE_VALUATION_ONLY = 0.9
CONFIDENCE_CORROBORATED = 0.8
CONFIDENCE_SINGLE_SIGNAL = 0.6


# ============================================================================
# P&L DETECTION RULES
# ============================================================================

def _annotation_alf(section: FacilitySection) -> Optional[str]:
    if section.facility_type and ALF_ANNOTATION.search(section.facility_type):
        return f"Facility type annotation: {section.facility_type}"
    return None


def _mapping_leased(section: FacilitySection) -> Optional[str]:
    if section.lease_owned == LEASED:
        return "Facility mapping: Leased"
    return None


def _lease_without_tax(section: FacilitySection) -> Optional[str]:
    has_lease = any(LEASE_EXPENSE.search(li.label) and li.annual_value != 0
                    for li in section.line_items)
    has_tax = any(PROPERTY_TAX.search(li.label) and li.annual_value > 0
                  for li in section.line_items)
    if has_lease and not has_tax:
        return "Has lease expense, no property tax"
    return None


def _alf_revenue(section: FacilitySection) -> Optional[str]:
    for li in section.line_items:
        if li.annual_value <= 0:
            continue
        if li.gl_code and ALF_REVENUE_CODE.match(li.gl_code):
            return "Has ALF revenue codes (42xxxx)"
        if SNC_LABEL.search(li.label):
            return "Has ALF/SNC revenue labels"
    return None


def _annotation_snf(section: FacilitySection) -> Optional[str]:
    if section.facility_type and SNF_ANNOTATION.search(section.facility_type):
        return f"Facility type annotation: {section.facility_type}"
    return None


def _snf_revenue(section: FacilitySection) -> Optional[str]:
    if any(li.gl_code and SNF_REVENUE_CODE.match(li.gl_code) and li.annual_value > 0
           for li in section.line_items):
        return "Has SNF revenue codes (400xxx)"
    return None


# Evaluated top to bottom: the first signal decides the property type,
# later signals of the same type corroborate it
DETECTION_RULES: List[Tuple[Callable[[FacilitySection], Optional[str]], str]] = [
    (_annotation_alf, ALF_SNC_OWNED),
    (_mapping_leased, LEASED),
    (_lease_without_tax, LEASED),
    (_alf_revenue, ALF_SNC_OWNED),
    (_annotation_snf, SNF_OWNED),
    (_snf_revenue, SNF_OWNED),
]


def detect_from_pl(section: FacilitySection) -> Tuple[str, List[str], int]:
    """
    Detect a property type from a P&L section

    Returns:
        (property_type, indicators, number of signals agreeing with the type)
    """
    signals = []
    for rule, property_type in DETECTION_RULES:
        indicator = rule(section)
        if indicator:
            signals.append((indicator, property_type))

    if not signals:
        return SNF_OWNED, ["Default classification: SNF-Owned"], 0

    chosen = signals[0][1]
    agreeing = [ind for ind, t in signals if t == chosen]
    return chosen, agreeing, len(agreeing)


def detect_snc_percent(section: FacilitySection) -> Optional[float]:
    """SNC share from an explicit "SNC %" row, else SNC revenue / total revenue"""
    for li in section.line_items:
        if SNC_PERCENT_LABEL.search(li.label):
            pct = li.annual_value
            if 0 <= pct <= 1:
                return pct
            if 1 < pct <= 100:
                return pct / 100.0

    snc_revenue = sum(abs(li.annual_value) for li in section.line_items
                      if li.category == "revenue" and SNC_LABEL.search(li.label) and not li.is_total)
    total_revenue = sum(abs(li.annual_value) for li in section.line_items
                        if li.category == "revenue" and li.is_total)
    if not total_revenue:
        total_revenue = abs(section.summary_metrics.total_revenue)
    if snc_revenue > 0 and total_revenue > 0:
        return min(snc_revenue / total_revenue, 1.0)
    return None


def extract_bed_count(section: FacilitySection,
                      mapping_entry: Optional[FacilityMappingEntry] = None) -> float:
    if mapping_entry is not None and mapping_entry.beds > 0:
        return mapping_entry.beds

    census = section.census_data
    if census is not None:
        if census.beds:
            return census.beds
        if census.total_patient_days and census.occupancy:
            return float(round(census.total_patient_days / (365 * census.occupancy)))

    for li in section.line_items:
        if BEDS_LABEL.search(li.label) and 0 < li.annual_value < 500:
            return li.annual_value
    return 0.0


# ============================================================================
# CLASSIFICATION
# ============================================================================

def valuation_method_for(property_type: str) -> str:
    return EBIT_MULTIPLIER if property_type == LEASED else EBITDAR_CAP_RATE


def _rate_for(property_type: str, snc_percent: Optional[float],
              multiplier: Optional[float], config: Optional[dict]) -> float:
    if property_type == LEASED:
        return get_leased_multiplier(multiplier, config)
    return get_cap_rate(property_type, snc_percent, config)


def classify_from_valuation(entry: AssetValuationEntry, name: Optional[str] = None,
                            beds: float = 0.0, confidence: float = CONFIDENCE_VALUATION_ONLY,
                            config: Optional[dict] = None) -> FacilityClassification:
    return FacilityClassification(
        facility_name=name or entry.facility_name,
        property_type=entry.property_type,
        valuation_method=valuation_method_for(entry.property_type),
        applicable_rate=_rate_for(entry.property_type, entry.snc_percent, entry.multiplier, config),
        beds=entry.beds or beds,
        confidence=confidence,
        indicators=[f"Asset valuation: {entry.property_type}"],
        snc_percent=entry.snc_percent,
    )


def classify_section(section: FacilitySection,
                     av_lookup: Dict[str, AssetValuationEntry],
                     facility_mapping: Optional[Dict[str, FacilityMappingEntry]] = None,
                     config: Optional[dict] = None) -> FacilityClassification:
    """Classify one T13 facility: valuation-file match first, then P&L detection"""
    mapping_entry = resolve_facility(section.facility_name, facility_mapping) if facility_mapping else None
    beds = extract_bed_count(section, mapping_entry)

    entry = find_by_name(section.facility_name, av_lookup) if av_lookup else None
    if entry is not None:
        return classify_from_valuation(entry, section.facility_name, beds,
                                       CONFIDENCE_VALUATION_MATCH, config)

    property_type, indicators, agreeing = detect_from_pl(section)
    snc = detect_snc_percent(section) if property_type == ALF_SNC_OWNED else None
    return FacilityClassification(
        facility_name=section.facility_name,
        property_type=property_type,
        valuation_method=valuation_method_for(property_type),
        applicable_rate=_rate_for(property_type, snc, None, config),
        beds=beds,
        confidence=CONFIDENCE_CORROBORATED if agreeing > 1 else CONFIDENCE_SINGLE_SIGNAL,
        indicators=indicators,
        snc_percent=snc,
    )


def classify_facilities(t13_facilities: Sequence[FacilitySection],
                        av_entries: Sequence[AssetValuationEntry],
                        config: Optional[dict] = None,
                        facility_mapping: Optional[Dict[str, FacilityMappingEntry]] = None) -> List[FacilityClassification]:
    """
    Classify every facility seen in the T13 and asset valuation data

    Args:
        t13_facilities: Parsed facility sections
        av_entries: Asset valuation entries (may be empty)
        config: Optional configuration (valuation section)
        facility_mapping: Optional opco mapping used for bed counts

    Returns:
        One classification per facility, deduplicated by normalized name
    """
    av_lookup = {e.facility_name: e for e in av_entries}

    classifications = [
        classify_section(section, av_lookup, facility_mapping, config)
        for section in t13_facilities
    ]

    t13_lookup = {c.facility_name: c for c in classifications}
    for entry in av_entries:
        if find_by_name(entry.facility_name, t13_lookup) is None:
            classifications.append(classify_from_valuation(entry, config=config))

    classifications = dedupe_by_name(classifications, key=lambda c: c.facility_name)
    counts: Dict[str, int] = {}
    for c in classifications:
        counts[c.property_type] = counts.get(c.property_type, 0) + 1
    logger.info("Classified %d facilities: %s", len(classifications), counts)
    return classifications


__all__ = [
    "classify_facilities", "classify_section", "classify_from_valuation",
    "detect_from_pl", "detect_snc_percent", "extract_bed_count",
    "valuation_method_for", "DETECTION_RULES",
]
