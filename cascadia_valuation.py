"""
Cascadia Valuation Engine
Three-method facility valuation:

1. SNF-Owned: EBITDAR / 12.5% cap rate
2. Leased: EBIT x multiplier (2.0-3.0x, default 2.5x)
3. ALF/SNC-Owned: EBITDAR / cap rate tiered by SNC% (8%, 9%, 12%)

plus category and portfolio totals, a cap-rate sensitivity table and an
external (lender) view of the same portfolio
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from extraction_models import (
    ALF_SNC_OWNED, LEASED, PROPERTY_TYPES, SNF_OWNED,
    AssetValuationEntry, CascadiaFacilityValuation, CascadiaValuationResult,
    CategoryTotal, DualView, FacilityClassification, FacilitySection,
    PortfolioTotal, SensitivityRow, SensitivityTable,
)
from pipeline_config import section
from sheet_utils import find_by_name

logger = logging.getLogger(__name__)

METHOD_LABELS = {
    SNF_OWNED: "EBITDA / Cap Rate",
    LEASED: "NI × Multiplier",
    ALF_SNC_OWNED: "EBITDA / Cap Rate",
}


# ============================================================================
# RATE SCHEDULE
# ============================================================================

def get_cap_rate(property_type: str, snc_percent: Optional[float] = None,
                 config: Optional[dict] = None) -> Optional[float]:
    """
    Cascadia cap rate for a property type

    Args:
        property_type: SNF-Owned, Leased or ALF/SNC-Owned
        snc_percent: SNC share as a fraction (ALF/SNC-Owned only)
        config: Optional configuration (valuation section)

    Returns:
        The cap rate; None for Leased, which is valued on a multiplier
    """
    cfg = section(config, "valuation")
    if property_type == SNF_OWNED:
        return cfg["snf_owned_cap_rate"]
    if property_type == LEASED:
        return None
    if not snc_percent:
        return cfg["alf_cap_rate_no_snc"]
    if snc_percent <= cfg["snc_breakpoint"]:
        return cfg["alf_cap_rate_low_snc"]
    return cfg["alf_cap_rate_high_snc"]


def get_leased_multiplier(multiplier: Optional[float] = None, config: Optional[dict] = None) -> float:
    """Clamp a Leased EBIT multiplier to the allowed band; default when absent"""
    cfg = section(config, "valuation")
    if not multiplier or multiplier <= 0:
        return cfg["leased_multiplier_default"]
    return min(max(multiplier, cfg["leased_multiplier_min"]), cfg["leased_multiplier_max"])


# ============================================================================
# METRIC SELECTION
# ============================================================================

def select_metric(property_type: str, t13: Optional[FacilitySection],
                  av: Optional[AssetValuationEntry],
                  override: Optional[dict] = None) -> Tuple[str, float]:
    """
    Pick the income metric a facility is valued on

    Owned types: override, T13 EBITDAR, T13 EBITDA, valuation EBITDA.
    Leased: override, T13 EBIT, T13 net income, valuation net income.

    Returns:
        (metric label, metric value); (label, 0.0) when nothing is available
    """
    override = override or {}
    if property_type == LEASED:
        if override.get("ebit"):
            return "EBIT", float(override["ebit"])
        if t13 is not None and t13.summary_metrics.ebit:
            return "EBIT", t13.summary_metrics.ebit
        if t13 is not None and t13.summary_metrics.net_income:
            return "Net Income", t13.summary_metrics.net_income
        if av is not None and av.latest_net_income:
            return "Net Income", av.latest_net_income
        return "EBIT", 0.0

    if override.get("ebitdar"):
        return "EBITDAR", float(override["ebitdar"])
    if t13 is not None and t13.summary_metrics.ebitdar:
        return "EBITDAR", t13.summary_metrics.ebitdar
    if t13 is not None and t13.summary_metrics.ebitda:
        return "EBITDA", t13.summary_metrics.ebitda
    if av is not None and av.latest_ebitda:
        return "EBITDA", av.latest_ebitda
    return "EBITDAR", 0.0


# ============================================================================
# SINGLE FACILITY
# ============================================================================

def value_facility(classification: FacilityClassification,
                   t13: Optional[FacilitySection],
                   av: Optional[AssetValuationEntry],
                   override: Optional[dict] = None,
                   config: Optional[dict] = None) -> Optional[CascadiaFacilityValuation]:
    """Value one classified facility; None when it has neither metric nor beds"""
    override = override or {}
    property_type = classification.property_type
    beds = classification.beds or (av.beds if av is not None else 0.0)
    metric_used, metric_value = select_metric(property_type, t13, av, override)

    cap_rate_basis = None
    if property_type == LEASED:
        rate = get_leased_multiplier(override.get("multiplier") or classification.applicable_rate, config)
        value = metric_value * rate
        rate_label = f"{rate:.1f}x Multiplier"
    else:
        rate = (override.get("cap_rate") or classification.applicable_rate
                or get_cap_rate(property_type, classification.snc_percent, config))
        value = metric_value / rate if rate > 0 else 0.0
        rate_label = f"{rate * 100:.1f}% Cap Rate"
        if property_type == ALF_SNC_OWNED:
            snc = round((classification.snc_percent or 0) * 100)
            rate_label += f" ({snc}% SNC)"
            cap_rate_basis = f"{rate * 100:.0f}% ({snc}% SNC)"

    if metric_value == 0 and beds == 0:
        return None

    return CascadiaFacilityValuation(
        facility_name=classification.facility_name,
        property_type=property_type,
        beds=beds,
        metric_used=metric_used,
        metric_value=metric_value,
        rate_or_multiplier=rate,
        rate_label=rate_label,
        facility_value=value,
        value_per_bed=value / beds if beds > 0 else 0.0,
        snc_percent=classification.snc_percent,
        cap_rate_basis=cap_rate_basis,
    )


# ============================================================================
# TOTALS, SENSITIVITY & DUAL VIEW
# ============================================================================

def build_category_totals(facilities: Sequence[CascadiaFacilityValuation]) -> List[CategoryTotal]:
    totals = []
    for property_type in PROPERTY_TYPES:
        members = [f for f in facilities if f.property_type == property_type]
        if not members:
            continue
        beds = sum(f.beds for f in members)
        value = sum(f.facility_value for f in members)
        totals.append(CategoryTotal(
            category=property_type,
            property_type=property_type,
            facility_count=len(members),
            total_beds=beds,
            total_value=value,
            avg_value_per_bed=value / beds if beds else 0.0,
            valuation_method=METHOD_LABELS[property_type],
        ))
    return totals


def build_sensitivity_table(facilities: Sequence[CascadiaFacilityValuation],
                            config: Optional[dict] = None) -> SensitivityTable:
    """
    Revalue the portfolio across cap-rate shifts

    Every cap-rate facility's own rate moves by the shift; multiplier
    (Leased) facilities keep their base value. The 0 bps row is the base.
    """
    cfg = section(config, "valuation")
    bps = np.array(cfg["sensitivity_bps"], dtype=float)
    base_values = np.array([f.facility_value for f in facilities], dtype=float)
    base_value = float(base_values.sum())

    if facilities:
        metrics = np.array([f.metric_value for f in facilities], dtype=float)
        rates = np.array([f.rate_or_multiplier for f in facilities], dtype=float)
        is_cap = np.array([f.property_type != LEASED for f in facilities])

        shifted = rates[np.newaxis, :] + bps[:, np.newaxis] / 10000.0
        with np.errstate(divide="ignore", invalid="ignore"):
            revalued = np.where(shifted > 0, metrics / shifted, 0.0)
        grid = np.where(is_cap[np.newaxis, :], revalued, base_values[np.newaxis, :])
        totals = grid.sum(axis=1)
    else:
        totals = np.zeros_like(bps)
    totals[bps == 0] = base_value

    reference_rate = cfg["snf_owned_cap_rate"]
    rows = []
    for step, total in zip(bps.astype(int).tolist(), totals):
        delta = float(total) - base_value
        rows.append(SensitivityRow(
            bps_change=step,
            cap_rate=reference_rate + step / 10000.0,
            label="Base" if step == 0 else f"{step:+d} bps",
            value=float(total),
            delta=delta,
            delta_percent=delta / base_value * 100 if base_value else 0.0,
        ))
    return SensitivityTable(base_value=base_value, rows=rows)


def build_dual_view(facilities: Sequence[CascadiaFacilityValuation], cascadia_value: float,
                    config: Optional[dict] = None) -> DualView:
    """External (lender) view at more conservative rates, and the value range between the two"""
    cfg = section(config, "valuation")
    external = 0.0
    for f in facilities:
        if f.property_type == SNF_OWNED:
            external += f.metric_value / cfg["external_snf_cap_rate"] if f.metric_value > 0 else 0.0
        elif f.property_type == LEASED:
            external += f.metric_value * cfg["external_leased_multiplier"]
        else:
            rate = f.rate_or_multiplier + cfg["external_alf_spread"]
            external += f.metric_value / rate if rate > 0 else 0.0

    low, high = min(external, cascadia_value), max(external, cascadia_value)
    return DualView(
        cascadia_value=cascadia_value,
        external_value=external,
        value_range={"low": low, "mid": (low + high) / 2, "high": high},
    )


# ============================================================================
# MAIN ENTRY
# ============================================================================

def run_cascadia_valuation(classifications: Sequence[FacilityClassification],
                           t13_facilities: Sequence[FacilitySection],
                           av_entries: Optional[Sequence[AssetValuationEntry]] = None,
                           overrides: Optional[Dict[str, dict]] = None,
                           config: Optional[dict] = None) -> CascadiaValuationResult:
    """
    Run the three-method valuation over classified facilities

    Args:
        classifications: Output of the facility classifier
        t13_facilities: Parsed T13 facility sections
        av_entries: Optional asset valuation entries
        overrides: Optional per-facility overrides keyed by facility name;
            keys cap_rate, multiplier, ebitdar, ebit
        config: Optional configuration (valuation section)

    Returns:
        CascadiaValuationResult
    """
    t13_lookup = {f.facility_name: f for f in t13_facilities}
    av_lookup = {e.facility_name: e for e in (av_entries or [])}
    overrides = overrides or {}

    facilities: List[CascadiaFacilityValuation] = []
    for classification in classifications:
        name = classification.facility_name
        t13 = find_by_name(name, t13_lookup) if t13_lookup else None
        av = find_by_name(name, av_lookup) if av_lookup else None
        override = find_by_name(name, overrides) if overrides else None
        valuation = value_facility(classification, t13, av, override, config)
        if valuation is not None:
            facilities.append(valuation)

    total_beds = sum(f.beds for f in facilities)
    total_value = sum(f.facility_value for f in facilities)
    portfolio = PortfolioTotal(
        facility_count=len(facilities),
        total_beds=total_beds,
        total_value=total_value,
        avg_value_per_bed=total_value / total_beds if total_beds else 0.0,
    )

    logger.info("Cascadia valuation: $%.1fM across %d facilities", total_value / 1e6, len(facilities))
    return CascadiaValuationResult(
        facilities=facilities,
        categories=build_category_totals(facilities),
        portfolio_total=portfolio,
        sensitivity=build_sensitivity_table(facilities, config),
        dual_view=build_dual_view(facilities, total_value, config),
    )


__all__ = [
    "get_cap_rate", "get_leased_multiplier", "select_metric", "value_facility",
    "build_category_totals", "build_sensitivity_table", "build_dual_view",
    "run_cascadia_valuation",
]
