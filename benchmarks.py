"""
SNF/ALF Benchmarks Module
Institutional knowledge base (geographic cap rates, valuation multiples,
operational tiers) and the benchmark engine that rates each facility
against it, flags deal-breakers and validates the cap rate used
"""

import logging
import re
from typing import Dict, List, Optional, Sequence, Tuple

from extraction_models import (
    EBITDAR_CAP_RATE,
    BenchmarkComparison, CapRateValidation, CascadiaFacilityValuation, DealBreaker,
    FacilityBenchmark, FacilityClassification, FacilitySection,
)
from pipeline_config import section as config_section
from sheet_utils import normalize_name

logger = logging.getLogger(__name__)

# SECTION 1: GEOGRAPHIC CAP RATE RANGES
# region -> asset type -> {low, high, notes}
GEOGRAPHIC_CAP_RATES = {
    "northeast": {
        "SNF": {"low": 0.085, "high": 0.115, "notes": "High regulatory barriers, strong unions, premium labor"},
        "ALF": {"low": 0.055, "high": 0.075, "notes": "Quality-focused performance-based contracting"},
    },
    "southeast": {
        "SNF": {"low": 0.075, "high": 0.09, "notes": "Growth demographics, expanding MA penetration"},
        "ALF": {"low": 0.055, "high": 0.07, "notes": "Emerging provider networks, cost-sensitive"},
    },
    "midwest": {
        "SNF": {"low": 0.075, "high": 0.095, "notes": "Value markets, established networks, cost pressure"},
        "ALF": {"low": 0.06, "high": 0.075, "notes": "Mature relationships, rural access challenges"},
    },
    "southwest": {
        "SNF": {"low": 0.07, "high": 0.09, "notes": "Business-friendly regulatory, growing population"},
        "ALF": {"low": 0.055, "high": 0.07, "notes": "Sun Belt migration, new development activity"},
    },
    "west_coast": {
        "SNF": {"low": 0.055, "high": 0.075, "notes": "Supply constraints, premium reimbursement"},
        "ALF": {"low": 0.04, "high": 0.06, "notes": "High-barrier markets, 30-50% premium"},
    },
    "northwest": {
        "SNF": {"low": 0.07, "high": 0.09, "notes": "Smaller markets, less institutional competition"},
        "ALF": {"low": 0.055, "high": 0.07, "notes": "Growing senior populations, limited supply"},
    },
}

# Used when a region has no range for the asset type
FALLBACK_CAP_RATES = {
    "SNF": {"low": 0.07, "high": 0.12},
    "ALF": {"low": 0.05, "high": 0.08},
}

# SECTION 2: VALUATION MULTIPLES BY MARKET TIER
# market tier -> multiple -> [low, high]
SNF_VALUATION_MULTIPLES = {
    "premium": {
        "revenue_multiple": [1.2, 1.8],
        "ebitda_multiple": [8, 12],
        "price_per_bed": [25000, 40000],
        "description": "Gateway markets, high-barrier-to-entry, institutional quality",
    },
    "growth": {
        "revenue_multiple": [0.8, 1.4],
        "ebitda_multiple": [6, 9],
        "price_per_bed": [15000, 30000],
        "description": "Expanding demographics, moderate competition, stabilizing operations",
    },
    "value": {
        "revenue_multiple": [0.6, 1.2],
        "ebitda_multiple": [4, 7],
        "price_per_bed": [10000, 20000],
        "description": "Rural/secondary markets, turnaround plays, succession-driven",
    },
}

ALF_VALUATION_MULTIPLES = {
    "premium": {
        "revenue_multiple": [2.0, 3.5],
        "ebitda_multiple": [12, 18],
        "price_per_bed": [175000, 300000],
        "description": "West Coast, major metros, Class A product",
    },
    "growth": {
        "revenue_multiple": [1.4, 2.2],
        "ebitda_multiple": [8, 14],
        "price_per_bed": [100000, 175000],
        "description": "Sun Belt, secondary metros, strong occupancy trends",
    },
    "value": {
        "revenue_multiple": [0.8, 1.5],
        "ebitda_multiple": [5, 9],
        "price_per_bed": [75000, 125000],
        "description": "Southeast tertiary, older product, repositioning opportunity",
    },
}

# SECTION 3: OPERATIONAL PERFORMANCE TIERS
# tier -> metric -> [min, max]; occupancy and percentages in whole percent
SNF_OPERATIONAL_TIERS = {
    "strong": {
        "revenue_per_bed_day": [150, 999],
        "occupancy": [95, 100],
        "ebitdar_margin": [20, 40],
        "labor_cost_percent": [40, 52],
        "agency_percent": [0, 3],
        "hppd": [4.5, 6.0],
        "description": "Top-quartile operator, institutional quality, premium valuation",
    },
    "average": {
        "revenue_per_bed_day": [100, 150],
        "occupancy": [80, 95],
        "ebitdar_margin": [10, 20],
        "labor_cost_percent": [52, 62],
        "agency_percent": [3, 10],
        "hppd": [3.5, 4.5],
        "description": "Market-rate operator, standard multiples, improvement potential",
    },
    "weak": {
        "revenue_per_bed_day": [0, 100],
        "occupancy": [0, 80],
        "ebitdar_margin": [-10, 10],
        "labor_cost_percent": [62, 80],
        "agency_percent": [10, 50],
        "hppd": [2.5, 3.5],
        "description": "Distressed or turnaround candidate, value pricing, execution risk",
    },
}

# SECTION 4: STATE LOOKUPS
STATE_TO_REGION = {
    "NY": "northeast", "CA": "west_coast", "IL": "midwest", "TX": "southwest", "DC": "northeast",
    "MA": "northeast", "AZ": "southwest", "GA": "southeast", "FL": "southeast", "PA": "northeast",
    "CO": "southwest", "WA": "northwest", "OR": "northwest", "VA": "southeast", "NJ": "northeast",
    "CT": "northeast", "MD": "northeast", "MN": "midwest", "NC": "southeast", "TN": "southeast",
    "OH": "midwest", "ID": "northwest", "MT": "northwest", "WY": "northwest", "ND": "midwest",
    "SD": "midwest", "NE": "midwest", "KS": "midwest", "IA": "midwest", "MO": "midwest",
    "AR": "southeast", "MS": "southeast", "AL": "southeast", "LA": "southeast", "OK": "southwest",
    "NM": "southwest", "NV": "west_coast", "UT": "southwest", "WI": "midwest", "IN": "midwest",
    "MI": "midwest", "KY": "southeast", "WV": "southeast", "SC": "southeast", "ME": "northeast",
    "NH": "northeast", "VT": "northeast", "RI": "northeast", "DE": "northeast", "HI": "west_coast",
    "AK": "northwest",
}

PREMIUM_STATES = {"NY", "CA", "IL", "TX", "DC", "MA"}
GROWTH_STATES = {"AZ", "GA", "FL", "PA", "CO", "WA", "OR", "VA", "NJ", "CT", "MD", "MN", "NC", "TN", "OH", "HI"}

MEDICAID_LABEL = re.compile(r"medicaid", re.I)
LABOR_LABEL = re.compile(r"salary|salaries|wage|payroll|labor|nursing|staff", re.I)


# SECTION 5: KNOWLEDGE BASE HELPERS

def get_region(state: Optional[str]) -> str:
    """Region for a two-letter state code (midwest when unknown)"""
    return STATE_TO_REGION.get((state or "").strip().upper(), "midwest")


def get_market_tier(state: Optional[str]) -> str:
    """
    Market tier for a state

    Returns:
        "premium", "growth" or "value"
    """
    code = (state or "").strip().upper()
    if code in PREMIUM_STATES:
        return "premium"
    if code in GROWTH_STATES:
        return "growth"
    return "value"


def asset_type_for(property_type: str) -> str:
    return "ALF" if "ALF" in property_type.upper() else "SNF"


def get_geographic_cap_rate(state: Optional[str], asset_type: str) -> Optional[Dict]:
    """
    Benchmark cap-rate range for a state and asset type

    Args:
        state: Two-letter state code
        asset_type: "SNF" or "ALF"

    Returns:
        Dict with low, high and notes, or None if not found
    """
    region = get_region(state)
    return GEOGRAPHIC_CAP_RATES.get(region, {}).get((asset_type or "SNF").upper())


def rate_against_range(actual: float, low: float, high: float) -> str:
    """Positional rating of a value against [low, high]: above, at or below"""
    if actual > high:
        return "above"
    if actual < low:
        return "below"
    return "at"


# SECTION 6: OPERATIONAL TIER

def score_operational_tier(facility: FacilitySection, beds: float) -> Tuple[str, float]:
    """
    Score a facility's operations into strong / average / weak

    Four equally weighted scores: EBITDAR margin, revenue per bed,
    occupancy (2 when unknown) and net income sign.

    Returns:
        (tier, average score)
    """
    metrics = facility.summary_metrics
    revenue = metrics.total_revenue

    margin = metrics.ebitdar / revenue * 100 if revenue > 0 else None
    if margin is not None and margin >= 20:
        margin_score = 3
    elif margin is not None and margin >= 10:
        margin_score = 2
    else:
        margin_score = 1

    revenue_per_bed = revenue / beds if beds > 0 and revenue > 0 else 0.0
    if revenue_per_bed >= 100000:
        revenue_score = 3
    elif revenue_per_bed >= 60000:
        revenue_score = 2
    else:
        revenue_score = 1

    occupancy = facility.census_data.occupancy if facility.census_data else None
    if occupancy is None or occupancy <= 0:
        occupancy_score = 2
    elif occupancy >= 0.95:
        occupancy_score = 3
    elif occupancy >= 0.80:
        occupancy_score = 2
    else:
        occupancy_score = 1

    income_score = 2 if metrics.net_income > 0 else 0

    score = (margin_score + revenue_score + occupancy_score + income_score) / 4.0
    if score >= 2.5:
        return "strong", score
    if score >= 1.5:
        return "average", score
    return "weak", score


# SECTION 7: COMPARISONS, DEAL-BREAKERS & CAP RATE VALIDATION

def _comparison(metric: str, actual: float, bounds: Sequence[float], unit: str,
                lower_is_better: bool = False) -> BenchmarkComparison:
    low, high = bounds[0], bounds[1]
    return BenchmarkComparison(
        metric=metric,
        actual=actual,
        low=low,
        median=(low + high) / 2,
        high=high,
        rating=rate_against_range(actual, low, high),
        unit=unit,
        lower_is_better=lower_is_better,
    )


def build_comparisons(facility: FacilitySection, classification: FacilityClassification,
                      valuation: Optional[CascadiaFacilityValuation], tier: str,
                      state: Optional[str]) -> List[BenchmarkComparison]:
    metrics = facility.summary_metrics
    revenue = metrics.total_revenue
    beds = classification.beds
    tier_ranges = SNF_OPERATIONAL_TIERS[tier]
    comparisons = []

    patient_days = facility.census_data.total_patient_days if facility.census_data else None
    if beds > 0 and patient_days:
        comparisons.append(_comparison(
            "Revenue Per Bed Day", round(revenue / patient_days, 2),
            tier_ranges["revenue_per_bed_day"], "$/day"))

    if revenue > 0:
        comparisons.append(_comparison(
            "EBITDAR Margin", round(metrics.ebitdar / revenue * 100, 1),
            tier_ranges["ebitdar_margin"], "%"))

    if valuation is not None and beds > 0:
        market_tier = get_market_tier(state)
        multiples = (ALF_VALUATION_MULTIPLES if asset_type_for(classification.property_type) == "ALF"
                     else SNF_VALUATION_MULTIPLES)[market_tier]
        comparisons.append(_comparison(
            "Value Per Bed", round(valuation.value_per_bed, 2), multiples["price_per_bed"], "$/bed"))

    labor = sum(abs(li.annual_value) for li in facility.line_items
                if li.category == "expense" and LABOR_LABEL.search(li.label) and not li.is_total)
    if labor > 0 and revenue > 0:
        comparisons.append(_comparison(
            "Labor Cost %", round(labor / revenue * 100, 1),
            tier_ranges["labor_cost_percent"], "%", lower_is_better=True))

    return comparisons


def medicaid_concentration(facility: FacilitySection) -> Optional[float]:
    """Medicaid-labeled revenue / total revenue, None without revenue"""
    revenue = facility.summary_metrics.total_revenue
    if revenue <= 0:
        return None
    medicaid = sum(abs(li.annual_value) for li in facility.line_items
                   if li.category == "revenue" and not li.is_total and not li.is_subtotal
                   and (MEDICAID_LABEL.search(li.label) or MEDICAID_LABEL.search(li.subcategory or "")))
    return medicaid / revenue


def check_deal_breakers(facility: FacilitySection, beds: float,
                        config: Optional[dict] = None) -> List[DealBreaker]:
    """
    Evaluate every deal-breaker rule; all are reported, triggered or not

    Args:
        facility: Facility section with summary metrics and line items
        beds: Bed count from the facility's classification
        config: Optional configuration (benchmarks section)

    Returns:
        Five DealBreaker results in a fixed order
    """
    cfg = config_section(config, "benchmarks")
    metrics = facility.summary_metrics
    revenue = metrics.total_revenue

    revenue_per_bed = revenue / beds if beds > 0 else None
    concentration = medicaid_concentration(facility)
    margin = metrics.ebitdar / revenue * 100 if revenue > 0 else None

    min_revenue = cfg["min_revenue_per_bed"]
    max_medicaid = cfg["max_medicaid_concentration"]
    min_margin = cfg["min_ebitdar_margin_pct"]

    return [
        DealBreaker("Negative Net Operating Income", metrics.net_income < 0, metrics.net_income, 0.0),
        DealBreaker("Negative EBITDA", metrics.ebitda < 0, metrics.ebitda, 0.0),
        DealBreaker(f"Revenue Per Bed < ${min_revenue / 1000:.0f}K/year",
                    revenue_per_bed is not None and 0 < revenue_per_bed < min_revenue,
                    revenue_per_bed, float(min_revenue)),
        DealBreaker(f"Medicaid Concentration > {max_medicaid * 100:.0f}%",
                    concentration is not None and concentration > max_medicaid,
                    concentration, max_medicaid),
        DealBreaker(f"EBITDAR Margin < {min_margin}%",
                    margin is not None and -100 < margin < min_margin,
                    margin, float(min_margin)),
    ]


def validate_cap_rate(classification: FacilityClassification,
                      state: Optional[str]) -> Optional[CapRateValidation]:
    """Check a cap-rate facility's rate against its geographic range; None for multiplier methods"""
    if classification.valuation_method != EBITDAR_CAP_RATE:
        return None
    asset_type = asset_type_for(classification.property_type)
    bounds = get_geographic_cap_rate(state, asset_type) or FALLBACK_CAP_RATES[asset_type]
    used = classification.applicable_rate
    return CapRateValidation(
        used_rate=used,
        low=bounds["low"],
        high=bounds["high"],
        is_within_range=bounds["low"] <= used <= bounds["high"],
        region=get_region(state),
        asset_type=asset_type,
    )


# SECTION 8: BENCHMARK ENGINE

def benchmark_facility(facility: FacilitySection, classification: FacilityClassification,
                       valuation: Optional[CascadiaFacilityValuation] = None,
                       state: Optional[str] = None,
                       config: Optional[dict] = None) -> FacilityBenchmark:
    """
    Benchmark one facility

    Args:
        facility: Parsed facility section (may be empty for valuation-only facilities)
        classification: The facility's classification
        valuation: Its Cascadia valuation, when one was produced
        state: Two-letter state code; defaults to the configured state
        config: Optional configuration (benchmarks section)

    Returns:
        FacilityBenchmark
    """
    cfg = config_section(config, "benchmarks")
    state = state or cfg["default_state"]
    tier, score = score_operational_tier(facility, classification.beds)
    return FacilityBenchmark(
        facility_name=classification.facility_name,
        operational_tier=tier,
        tier_score=score,
        comparisons=build_comparisons(facility, classification, valuation, tier, state),
        deal_breakers=check_deal_breakers(facility, classification.beds, config),
        cap_rate_validation=validate_cap_rate(classification, state),
    )


def benchmark_portfolio(t13_facilities: Sequence[FacilitySection],
                        classifications: Sequence[FacilityClassification],
                        valuations: Sequence[CascadiaFacilityValuation] = (),
                        states: Optional[Dict[str, str]] = None,
                        config: Optional[dict] = None) -> List[FacilityBenchmark]:
    """One FacilityBenchmark per classified facility, in classification order"""
    sections = {normalize_name(f.facility_name): f for f in t13_facilities}
    values = {normalize_name(v.facility_name): v for v in valuations}
    states = {normalize_name(k): v for k, v in (states or {}).items()}

    results = []
    for classification in classifications:
        key = normalize_name(classification.facility_name)
        facility = sections.get(key) or FacilitySection(classification.facility_name, -1, -1)
        results.append(benchmark_facility(facility, classification, values.get(key),
                                          states.get(key), config))

    flagged = sum(1 for b in results if b.triggered_deal_breakers)
    logger.info("Benchmarked %d facilities, %d with deal-breakers", len(results), flagged)
    return results


# Export key components
__all__ = [
    'GEOGRAPHIC_CAP_RATES',
    'SNF_VALUATION_MULTIPLES',
    'ALF_VALUATION_MULTIPLES',
    'SNF_OPERATIONAL_TIERS',
    'STATE_TO_REGION',
    'get_region',
    'get_market_tier',
    'get_geographic_cap_rate',
    'rate_against_range',
    'score_operational_tier',
    'check_deal_breakers',
    'validate_cap_rate',
    'benchmark_facility',
    'benchmark_portfolio'
]
