"""
Test Suite for Facility Classification and the Cascadia Valuation Engine
Property type detection, the rate schedule, metric selection, sensitivity
and the external view
"""

import unittest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cascadia_valuation import (
    build_dual_view, build_sensitivity_table, get_cap_rate, get_leased_multiplier,
    run_cascadia_valuation, select_metric, value_facility,
)
from extraction_models import (
    ALF_SNC_OWNED, EBIT_MULTIPLIER, EBITDAR_CAP_RATE, LEASED, SNF_OWNED,
    AssetValuationEntry, CascadiaFacilityValuation, CensusData, FacilityClassification,
    FacilityMappingEntry, FacilitySection, LineItem, SummaryMetrics,
)
from facility_classifier import (
    classify_facilities, detect_from_pl, detect_snc_percent, extract_bed_count,
)
from pipeline_config import load_config
from sheet_utils import Sheet
from t13_parser import parse_t13


def line(row, gl_code, label, value, category, is_total=False):
    return LineItem(row_index=row, gl_code=gl_code, label=label, annual_value=value,
                    category=category, is_total=is_total)


def facility(name, items=(), facility_type=None, **metrics):
    return FacilitySection(name, 0, len(items), facility_type=facility_type,
                           line_items=list(items), summary_metrics=SummaryMetrics(**metrics))


def classification(name, property_type, rate, beds=100, snc=None):
    method = EBIT_MULTIPLIER if property_type == LEASED else EBITDAR_CAP_RATE
    return FacilityClassification(name, property_type, method, rate, beds, 0.95, snc_percent=snc)


class TestFacilityClassifier(unittest.TestCase):
    """Valuation evidence first, P&L heuristics second"""

    def test_valuation_match_wins(self):
        section = facility("Gateway Care", [line(0, "420100", "ALF Private Revenue", 100, "revenue")])
        entry = AssetValuationEntry("Gateway Care", SNF_OWNED, 110, cap_rate=0.125)
        result = classify_facilities([section], [entry])
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].property_type, SNF_OWNED)
        self.assertEqual(result[0].applicable_rate, 0.125)
        self.assertEqual(result[0].beds, 110)
        self.assertEqual(result[0].confidence, 0.95)

    def test_valuation_only_facilities_added(self):
        entry = AssetValuationEntry("Echo Pines", LEASED, 70, multiplier=5.0)
        result = classify_facilities([], [entry])
        self.assertEqual(result[0].facility_name, "Echo Pines")
        self.assertEqual(result[0].valuation_method, EBIT_MULTIPLIER)
        self.assertEqual(result[0].applicable_rate, 3.0)
        self.assertEqual(result[0].confidence, 0.9)

    def test_lease_without_property_tax_is_leased(self):
        section = facility("Harbor View", [
            line(0, "400100", "Medicare Revenue", 1000000, "revenue"),
            line(1, "660100", "Rent Expense", 200000, "expense"),
        ])
        property_type, indicators, _ = detect_from_pl(section)
        self.assertEqual(property_type, LEASED)
        self.assertIn("Has lease expense, no property tax", indicators)

    def test_lease_with_property_tax_is_owned(self):
        section = facility("Harbor View", [
            line(0, "400100", "Medicare Revenue", 1000000, "revenue"),
            line(1, "660100", "Rent Expense", 200000, "expense"),
            line(2, "670100", "Property Tax", 50000, "expense"),
        ])
        self.assertEqual(detect_from_pl(section)[0], SNF_OWNED)

    def test_alf_annotation_and_revenue_codes(self):
        section = facility("Maple Court", [line(0, "420100", "ALF Private Revenue", 500000, "revenue")],
                           facility_type="ALF")
        property_type, indicators, agreeing = detect_from_pl(section)
        self.assertEqual(property_type, ALF_SNC_OWNED)
        self.assertEqual(agreeing, 2)

    def test_underscore_joined_annotations(self):
        revenue = [line(0, "400100", "Medicare Revenue", 1000000, "revenue")]
        campus = facility("Sapphire Campus", revenue, facility_type="SNF_AL_IL")
        property_type, indicators, _ = detect_from_pl(campus)
        self.assertEqual(property_type, ALF_SNC_OWNED)
        self.assertEqual(indicators, ["Facility type annotation: SNF_AL_IL"])

        snf_al = facility("Quartz Campus", revenue, facility_type="SNF_AL")
        property_type, indicators, agreeing = detect_from_pl(snf_al)
        self.assertEqual(property_type, SNF_OWNED)
        self.assertIn("Facility type annotation: SNF_AL", indicators)
        self.assertEqual(agreeing, 2)

    def test_mixed_campus_header_classified_alf(self):
        sheet = Sheet("Opco T13", [
            ["GL Code", "Description", "Actual", "PPD"],
            ["Sapphire Campus (SNF_AL_IL)"],
            ["400100", "Medicare Revenue", 4000000, 450],
            ["499999", "Total Operating Revenue", 4000000, 450],
            ["899000", "EBITDAR", 800000, 90],
        ])
        sections = parse_t13([sheet]).facilities
        self.assertEqual(sections[0].facility_type, "SNF_AL_IL")
        result = classify_facilities(sections, [])
        self.assertEqual(result[0].property_type, ALF_SNC_OWNED)
        self.assertEqual(result[0].applicable_rate, 0.08)

    def test_mapping_lease_status(self):
        section = facility("Harbor View")
        section.lease_owned = LEASED
        self.assertEqual(detect_from_pl(section)[0], LEASED)

    def test_confidence_by_signal_count(self):
        corroborated = facility("Oak Hollow", [line(0, "400100", "Medicare Revenue", 1000000, "revenue")],
                                facility_type="SNF")
        single = facility("Pine Hollow", [line(0, "400100", "Medicare Revenue", 1000000, "revenue")])
        default = facility("Elm Hollow")
        result = {c.facility_name: c for c in classify_facilities([corroborated, single, default], [])}
        self.assertEqual(result["Oak Hollow"].confidence, 0.8)
        self.assertEqual(result["Pine Hollow"].confidence, 0.6)
        self.assertEqual(result["Elm Hollow"].property_type, SNF_OWNED)
        self.assertEqual(result["Elm Hollow"].indicators, ["Default classification: SNF-Owned"])

    def test_snc_percent_from_revenue_share(self):
        section = facility("Maple Court", [
            line(0, "420100", "Specific Needs Revenue", 250000, "revenue"),
            line(1, "420900", "Total Revenue", 1000000, "revenue", is_total=True),
        ], total_revenue=1000000)
        self.assertAlmostEqual(detect_snc_percent(section), 0.25)

    def test_snc_percent_from_explicit_row(self):
        section = facility("Maple Court", [line(0, "", "SNC %", 40, "metric")])
        self.assertAlmostEqual(detect_snc_percent(section), 0.4)

    def test_bed_count_sources(self):
        section = facility("Gateway Care")
        mapping = FacilityMappingEntry("Gateway Care", "Gateway Care Center", beds=120)
        self.assertEqual(extract_bed_count(section, mapping), 120)
        section.census_data = CensusData(total_patient_days=32850, occupancy=0.9)
        self.assertEqual(extract_bed_count(section), 100)
        self.assertEqual(extract_bed_count(facility("Empty")), 0.0)

    def test_duplicate_names_collapsed(self):
        result = classify_facilities([facility("Gateway Care"), facility("gateway care")], [])
        self.assertEqual(len(result), 1)


class TestRateSchedule(unittest.TestCase):
    """Pure rate lookups"""

    def test_cap_rates(self):
        self.assertEqual(get_cap_rate(SNF_OWNED), 0.125)
        self.assertIsNone(get_cap_rate(LEASED))
        self.assertEqual(get_cap_rate(ALF_SNC_OWNED), 0.08)
        self.assertEqual(get_cap_rate(ALF_SNC_OWNED, 0.0), 0.08)
        self.assertEqual(get_cap_rate(ALF_SNC_OWNED, 0.2), 0.09)
        self.assertEqual(get_cap_rate(ALF_SNC_OWNED, 0.33), 0.09)
        self.assertEqual(get_cap_rate(ALF_SNC_OWNED, 0.5), 0.12)

    def test_cap_rate_is_pure(self):
        first = [get_cap_rate(t, s) for t in (SNF_OWNED, LEASED, ALF_SNC_OWNED) for s in (None, 0.2, 0.6)]
        second = [get_cap_rate(t, s) for t in (SNF_OWNED, LEASED, ALF_SNC_OWNED) for s in (None, 0.2, 0.6)]
        self.assertEqual(first, second)

    def test_leased_multiplier_clamped(self):
        self.assertEqual(get_leased_multiplier(), 2.5)
        self.assertEqual(get_leased_multiplier(0), 2.5)
        self.assertEqual(get_leased_multiplier(5.0), 3.0)
        self.assertEqual(get_leased_multiplier(1.2), 2.0)
        self.assertEqual(get_leased_multiplier(2.75), 2.75)

    def test_config_overrides_rate(self):
        config = load_config()
        config["valuation"]["snf_owned_cap_rate"] = 0.13
        self.assertEqual(get_cap_rate(SNF_OWNED, config=config), 0.13)
        self.assertEqual(get_cap_rate(SNF_OWNED), 0.125)


class TestValuation(unittest.TestCase):
    """Metric selection and per-facility values"""

    def test_owned_metric_precedence(self):
        section = facility("Gateway Care", ebitdar=2000000, ebitda=1500000)
        av = AssetValuationEntry("Gateway Care", SNF_OWNED, 100, cap_rate=0.125,
                                 ebitda_by_year={"2025": 1800000})
        self.assertEqual(select_metric(SNF_OWNED, section, av, {"ebitdar": 2200000}), ("EBITDAR", 2200000.0))
        self.assertEqual(select_metric(SNF_OWNED, section, av), ("EBITDAR", 2000000))
        self.assertEqual(select_metric(SNF_OWNED, facility("x", ebitda=1500000), av), ("EBITDA", 1500000))
        self.assertEqual(select_metric(SNF_OWNED, None, av), ("EBITDA", 1800000))
        self.assertEqual(select_metric(SNF_OWNED, None, None), ("EBITDAR", 0.0))

    def test_leased_metric_precedence(self):
        av = AssetValuationEntry("Echo Pines", LEASED, 70, multiplier=2.5,
                                 net_income_by_year={"2025": 300000})
        self.assertEqual(select_metric(LEASED, facility("x", ebit=500000, net_income=400000), av), ("EBIT", 500000))
        self.assertEqual(select_metric(LEASED, facility("x", net_income=400000), av), ("Net Income", 400000))
        self.assertEqual(select_metric(LEASED, None, av), ("Net Income", 300000))

    def test_snf_value(self):
        result = value_facility(classification("Gateway Care", SNF_OWNED, 0.125),
                                facility("Gateway Care", ebitdar=2000000), None)
        self.assertEqual(result.facility_value, 16000000)
        self.assertEqual(result.value_per_bed, 160000)
        self.assertEqual(result.rate_label, "12.5% Cap Rate")

    def test_leased_value(self):
        result = value_facility(classification("Echo Pines", LEASED, 2.5, beds=70),
                                facility("Echo Pines", ebit=400000), None)
        self.assertEqual(result.facility_value, 1000000)
        self.assertEqual(result.rate_label, "2.5x Multiplier")

    def test_alf_value_carries_snc_basis(self):
        result = value_facility(classification("Maple Court", ALF_SNC_OWNED, 0.09, beds=60, snc=0.25),
                                facility("Maple Court", ebitdar=900000), None)
        self.assertAlmostEqual(result.facility_value, 10000000)
        self.assertEqual(result.rate_label, "9.0% Cap Rate (25% SNC)")
        self.assertEqual(result.cap_rate_basis, "9% (25% SNC)")

    def test_override_cap_rate(self):
        result = value_facility(classification("Gateway Care", SNF_OWNED, 0.125),
                                facility("Gateway Care", ebitdar=2000000), None, {"cap_rate": 0.1})
        self.assertAlmostEqual(result.facility_value, 20000000)

    def test_no_metric_and_no_beds_skipped(self):
        self.assertIsNone(value_facility(classification("Ghost", SNF_OWNED, 0.125, beds=0), None, None))

    def test_portfolio_run(self):
        classifications = [
            classification("Gateway Care", SNF_OWNED, 0.125),
            classification("Echo Pines", LEASED, 2.5, beds=70),
        ]
        sections = [facility("Gateway Care", ebitdar=2000000), facility("Echo Pines", ebit=400000)]
        result = run_cascadia_valuation(classifications, sections,
                                        overrides={"Gateway Care": {"ebitdar": 2500000}})
        self.assertEqual(result.portfolio_total.facility_count, 2)
        self.assertEqual(result.portfolio_total.total_beds, 170)
        self.assertEqual(result.portfolio_total.total_value, 21000000)
        self.assertEqual([c.category for c in result.categories], [SNF_OWNED, LEASED])


class TestSensitivityAndDualView(unittest.TestCase):
    """Portfolio revaluation across cap-rate shifts"""

    def setUp(self):
        self.facilities = [
            CascadiaFacilityValuation("Gateway Care", SNF_OWNED, 100, "EBITDAR", 1250000, 0.125,
                                      "12.5% Cap Rate", 10000000, 100000),
            CascadiaFacilityValuation("Echo Pines", LEASED, 70, "EBIT", 1000000, 2.5,
                                      "2.5x Multiplier", 2500000, 35714.29),
        ]

    def test_base_row(self):
        table = build_sensitivity_table(self.facilities)
        self.assertEqual(len(table.rows), 9)
        base = table.base_row
        self.assertEqual(base.label, "Base")
        self.assertEqual(base.value, table.base_value)
        self.assertEqual(base.delta, 0.0)
        self.assertEqual(base.cap_rate, 0.125)
        self.assertEqual(table.base_value, 12500000)

    def test_shifted_rows_leave_multiplier_facilities_alone(self):
        table = build_sensitivity_table(self.facilities)
        up = next(r for r in table.rows if r.bps_change == 100)
        self.assertEqual(up.label, "+100 bps")
        self.assertAlmostEqual(up.value, 1250000 / 0.135 + 2500000, places=2)
        self.assertLess(up.delta, 0)
        down = next(r for r in table.rows if r.bps_change == -50)
        self.assertEqual(down.label, "-50 bps")
        self.assertAlmostEqual(down.value, 1250000 / 0.12 + 2500000, places=2)

    def test_empty_portfolio(self):
        table = build_sensitivity_table([])
        self.assertEqual(table.base_value, 0.0)
        self.assertTrue(all(r.value == 0 for r in table.rows))

    def test_dual_view(self):
        view = build_dual_view(self.facilities, 12500000)
        self.assertAlmostEqual(view.external_value, 1250000 / 0.12 + 4000000, places=2)
        self.assertEqual(view.value_range["low"], 12500000)
        self.assertAlmostEqual(view.value_range["high"], view.external_value)
        self.assertAlmostEqual(view.value_range["mid"], (12500000 + view.external_value) / 2)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestFacilityClassifier))
    suite.addTests(loader.loadTestsFromTestCase(TestRateSchedule))
    suite.addTests(loader.loadTestsFromTestCase(TestValuation))
    suite.addTests(loader.loadTestsFromTestCase(TestSensitivityAndDualView))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
