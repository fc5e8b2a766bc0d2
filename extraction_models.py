"""
Smart-Excel Data Model
Entities produced by one pipeline run: file classifications, GL mapping
entries, T13 facility sections, asset valuation entries, facility
classifications, Cascadia valuation results and benchmarks
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# ============================================================================
# ENUMERATIONS
# ============================================================================

FILE_TYPES = ["opco_review", "asset_valuation", "portfolio_model", "gl_mapping", "unknown"]

# Lower = parsed first; the orchestrator sorts its work list on this
EXTRACTION_PRIORITY = {
    "gl_mapping": 0,
    "opco_review": 1,
    "asset_valuation": 2,
    "portfolio_model": 3,
    "unknown": 99,
}

SNF_OWNED = "SNF-Owned"
LEASED = "Leased"
ALF_SNC_OWNED = "ALF/SNC-Owned"
PROPERTY_TYPES = [SNF_OWNED, LEASED, ALF_SNC_OWNED]

EBITDAR_CAP_RATE = "ebitdar_cap_rate"
EBIT_MULTIPLIER = "ebit_multiplier"
VALUATION_METHODS = [EBITDAR_CAP_RATE, EBIT_MULTIPLIER]

LINE_ITEM_CATEGORIES = ["revenue", "expense", "metric", "census"]


class DictMixin:
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# FILE CLASSIFICATION
# ============================================================================

@dataclass(frozen=True)
class FileClassification(DictMixin):
    document_id: str
    filename: str
    file_type: str
    confidence: float
    indicators: Tuple[str, ...] = ()
    sheet_summary: Tuple[Dict[str, Any], ...] = ()

    def __post_init__(self):
        if self.file_type not in EXTRACTION_PRIORITY:
            raise ValueError(f"Invalid file_type: {self.file_type}")

    @property
    def extraction_priority(self) -> int:
        return EXTRACTION_PRIORITY[self.file_type]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["extraction_priority"] = self.extraction_priority
        return data


# ============================================================================
# GL MAPPING
# ============================================================================

@dataclass(frozen=True)
class GLMappingEntry(DictMixin):
    gl_code: str
    label: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    coa_code: Optional[str] = None
    facility_mappings: Tuple[Tuple[str, str], ...] = ()


# ============================================================================
# T13 / OPCO
# ============================================================================

@dataclass(frozen=True)
class LineItem(DictMixin):
    row_index: int
    gl_code: str
    label: str
    annual_value: float
    category: str
    monthly_value: Optional[float] = None
    ppd_value: Optional[float] = None
    budget_annual: Optional[float] = None
    budget_ppd: Optional[float] = None
    subcategory: Optional[str] = None
    coa_code: Optional[str] = None
    is_subtotal: bool = False
    is_total: bool = False
    indent_level: int = 1
    monthly_values: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if self.category not in LINE_ITEM_CATEGORIES:
            raise ValueError(f"Invalid line item category: {self.category}")


@dataclass
class CensusData(DictMixin):
    total_patient_days: Optional[float] = None
    avg_daily_census: Optional[float] = None
    beds: Optional[float] = None
    occupancy: Optional[float] = None


@dataclass
class SummaryMetrics(DictMixin):
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    ebitdar: float = 0.0
    ebitda: float = 0.0
    ebit: float = 0.0
    net_income: float = 0.0
    management_fee: Optional[float] = None
    management_fee_percent: Optional[float] = None
    lease_expense: Optional[float] = None
    provider_tax: Optional[float] = None


@dataclass
class FacilitySection(DictMixin):
    facility_name: str
    start_row: int
    end_row: int
    sheet_name: str = ""
    facility_type: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    census_data: Optional[CensusData] = None
    summary_metrics: SummaryMetrics = field(default_factory=SummaryMetrics)
    # metric name -> "direct" | "derived" | "current_state"
    metric_sources: Dict[str, str] = field(default_factory=dict)
    column_map: Dict[str, Optional[int]] = field(default_factory=dict)
    property_name: Optional[str] = None
    lease_owned: Optional[str] = None
    business_line: Optional[str] = None

    @property
    def row_range(self) -> Tuple[int, int]:
        return (self.start_row, self.end_row)


@dataclass(frozen=True)
class FacilityMappingEntry(DictMixin):
    opco_name: str
    property_name: str
    beds: float = 0.0
    lease_owned: str = ""
    business_line: str = ""
    state_bl: str = ""
    group: str = ""


@dataclass
class T13ParseResult(DictMixin):
    facilities: List[FacilitySection] = field(default_factory=list)
    rollup: Optional[FacilitySection] = None
    facility_mapping: Dict[str, FacilityMappingEntry] = field(default_factory=dict)
    gl_code_labels: Dict[str, str] = field(default_factory=dict)
    periods: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# ASSET VALUATION
# ============================================================================

@dataclass
class AssetValuationEntry(DictMixin):
    """
    One facility row from an asset valuation workbook

    Exactly one of cap_rate / multiplier may be set: a cap rate marks an
    EBITDA-based entry, a multiplier a net-income-based (Leased) entry.
    """
    facility_name: str
    property_type: str
    beds: float
    snc_percent: Optional[float] = None
    cap_rate: Optional[float] = None
    multiplier: Optional[float] = None
    ebitda_by_year: Dict[str, float] = field(default_factory=dict)
    net_income_by_year: Dict[str, float] = field(default_factory=dict)
    value_by_year: Dict[str, float] = field(default_factory=dict)
    value_per_bed_by_year: Dict[str, float] = field(default_factory=dict)
    city: Optional[str] = None
    state: Optional[str] = None
    notes: Optional[str] = None
    row_index: int = -1
    sheet_name: str = ""

    def __post_init__(self):
        if self.cap_rate is not None and self.multiplier is not None:
            raise ValueError(
                f"{self.facility_name}: cap_rate and multiplier are mutually exclusive")

    @staticmethod
    def _latest(values: Dict[str, float]) -> Optional[float]:
        for year in sorted(values, reverse=True):
            if values[year]:
                return values[year]
        return None

    @property
    def latest_ebitda(self) -> Optional[float]:
        return self._latest(self.ebitda_by_year)

    @property
    def latest_net_income(self) -> Optional[float]:
        return self._latest(self.net_income_by_year)

    @property
    def latest_value(self) -> Optional[float]:
        return self._latest(self.value_by_year)

    @property
    def latest_value_per_bed(self) -> Optional[float]:
        vpb = self._latest(self.value_per_bed_by_year)
        if vpb:
            return vpb
        value = self.latest_value
        if value and self.beds > 0:
            return value / self.beds
        return None


@dataclass
class CategoryTotal(DictMixin):
    category: str
    property_type: str
    facility_count: int
    total_beds: float
    total_value: float
    avg_value_per_bed: float
    valuation_method: str


@dataclass
class PortfolioTotal(DictMixin):
    facility_count: int = 0
    total_beds: float = 0.0
    total_value: float = 0.0
    avg_value_per_bed: float = 0.0


@dataclass
class AssetValuationResult(DictMixin):
    entries: List[AssetValuationEntry] = field(default_factory=list)
    category_totals: List[CategoryTotal] = field(default_factory=list)
    portfolio_total: PortfolioTotal = field(default_factory=PortfolioTotal)
    scaled_to_thousands: bool = False
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# PORTFOLIO MODEL
# ============================================================================

@dataclass
class PortfolioFinancials(DictMixin):
    total_revenue: float = 0.0
    revenue_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    expense_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    ebitdar: float = 0.0
    ebitda: float = 0.0
    ebitdar_margin: Optional[float] = None
    ebitda_margin: Optional[float] = None
    management_fee: Optional[float] = None
    lease_expense: Optional[float] = None


@dataclass
class PortfolioEntityGroup(DictMixin):
    group_name: str
    financials: PortfolioFinancials


@dataclass
class PortfolioScenario(DictMixin):
    name: str
    sheet_name: str
    entity_groups: List[PortfolioEntityGroup] = field(default_factory=list)
    totals: PortfolioFinancials = field(default_factory=PortfolioFinancials)


@dataclass
class PortfolioModelResult(DictMixin):
    scenarios: List[PortfolioScenario] = field(default_factory=list)
    individual_facilities: List[FacilitySection] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# FACILITY CLASSIFICATION & VALUATION
# ============================================================================

@dataclass
class FacilityClassification(DictMixin):
    facility_name: str
    property_type: str
    valuation_method: str
    applicable_rate: float
    beds: float
    confidence: float
    indicators: List[str] = field(default_factory=list)
    snc_percent: Optional[float] = None

    def __post_init__(self):
        if self.property_type not in PROPERTY_TYPES:
            raise ValueError(f"Invalid property_type: {self.property_type}")
        if self.valuation_method not in VALUATION_METHODS:
            raise ValueError(f"Invalid valuation_method: {self.valuation_method}")


@dataclass
class CascadiaFacilityValuation(DictMixin):
    facility_name: str
    property_type: str
    beds: float
    metric_used: str
    metric_value: float
    rate_or_multiplier: float
    rate_label: str
    facility_value: float
    value_per_bed: float
    snc_percent: Optional[float] = None
    cap_rate_basis: Optional[str] = None


@dataclass
class SensitivityRow(DictMixin):
    bps_change: int
    cap_rate: float
    label: str
    value: float
    delta: float
    delta_percent: float


@dataclass
class SensitivityTable(DictMixin):
    base_value: float = 0.0
    rows: List[SensitivityRow] = field(default_factory=list)

    @property
    def base_row(self) -> Optional[SensitivityRow]:
        for row in self.rows:
            if row.bps_change == 0:
                return row
        return None


@dataclass
class DualView(DictMixin):
    cascadia_value: float
    external_value: float
    value_range: Dict[str, float]


@dataclass
class CascadiaValuationResult(DictMixin):
    facilities: List[CascadiaFacilityValuation] = field(default_factory=list)
    categories: List[CategoryTotal] = field(default_factory=list)
    portfolio_total: PortfolioTotal = field(default_factory=PortfolioTotal)
    sensitivity: SensitivityTable = field(default_factory=SensitivityTable)
    dual_view: Optional[DualView] = None


# ============================================================================
# BENCHMARKS
# ============================================================================

@dataclass
class BenchmarkComparison(DictMixin):
    metric: str
    actual: float
    low: float
    median: float
    high: float
    rating: str
    unit: str
    lower_is_better: bool = False


@dataclass
class DealBreaker(DictMixin):
    rule: str
    triggered: bool
    value: Optional[float] = None
    threshold: Optional[float] = None


@dataclass
class CapRateValidation(DictMixin):
    used_rate: float
    low: float
    high: float
    is_within_range: bool
    region: str
    asset_type: str


@dataclass
class FacilityBenchmark(DictMixin):
    facility_name: str
    operational_tier: str
    tier_score: float
    comparisons: List[BenchmarkComparison] = field(default_factory=list)
    deal_breakers: List[DealBreaker] = field(default_factory=list)
    cap_rate_validation: Optional[CapRateValidation] = None

    @property
    def triggered_deal_breakers(self) -> List[DealBreaker]:
        return [d for d in self.deal_breakers if d.triggered]


# ============================================================================
# RATE LETTERS
# ============================================================================

@dataclass
class PayerRate(DictMixin):
    facility_name: str
    document_id: str
    source: str
    confidence: float
    effective_date: Optional[str] = None
    rates: Dict[str, float] = field(default_factory=dict)


# ============================================================================
# COMBINED RESULT
# ============================================================================

@dataclass
class SmartExtractionResult:
    file_classifications: List[FileClassification] = field(default_factory=list)
    gl_mapping: Any = None
    t13_data: Optional[T13ParseResult] = None
    asset_valuation: Optional[AssetValuationResult] = None
    portfolio_model: Optional[PortfolioModelResult] = None
    facility_classifications: List[FacilityClassification] = field(default_factory=list)
    cascadia_valuation: Optional[CascadiaValuationResult] = None
    benchmarks: List[FacilityBenchmark] = field(default_factory=list)
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    extraction_method: str = "smart_excel"

    def to_dict(self) -> Dict[str, Any]:
        def _opt(obj):
            return obj.to_dict() if obj is not None else None

        return {
            "file_classifications": [c.to_dict() for c in self.file_classifications],
            "gl_mapping": _opt(self.gl_mapping),
            "t13_data": _opt(self.t13_data),
            "asset_valuation": _opt(self.asset_valuation),
            "portfolio_model": _opt(self.portfolio_model),
            "facility_classifications": [c.to_dict() for c in self.facility_classifications],
            "cascadia_valuation": _opt(self.cascadia_valuation),
            "benchmarks": [b.to_dict() for b in self.benchmarks],
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "processing_time_ms": self.processing_time_ms,
            "extraction_method": self.extraction_method,
        }
