"""
Test Suite for the SNF/ALF Benchmark Engine
Operational tiers, positional ratings, deal-breakers and cap rate validation
"""

import unittest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from benchmarks import (
    benchmark_facility, benchmark_portfolio, check_deal_breakers, get_geographic_cap_rate,
    get_market_tier, get_region, rate_against_range, score_operational_tier, validate_cap_rate,
)
from extraction_models import (
    ALF_SNC_OWNED, EBIT_MULTIPLIER, EBITDAR_CAP_RATE, LEASED, SNF_OWNED,
    CascadiaFacilityValuation, CensusData, FacilityClassification, FacilitySection,
    LineItem, SummaryMetrics,
)


def revenue_facility(medicaid, private, name="Gateway Care", **metrics):
    """Facility whose total revenue is the sum of a Medicaid and a private line"""
    items = [
        LineItem(0, "400200", "Medicaid Revenue", medicaid, "revenue"),
        LineItem(1, "400500", "Private Pay Revenue", private, "revenue"),
        LineItem(2, "499999", "Total Operating Revenue", medicaid + private, "revenue", is_total=True),
        LineItem(3, "600300", "Nursing Salaries", (medicaid + private) * 0.5, "expense"),
    ]
    metrics.setdefault("total_revenue", medicaid + private)
    return FacilitySection(name, 0, 3, line_items=items, summary_metrics=SummaryMetrics(**metrics))


def snf_classification(name="Gateway Care", beds=100, rate=0.125):
    return FacilityClassification(name, SNF_OWNED, EBITDAR_CAP_RATE, rate, beds, 0.95)


class TestKnowledgeBase(unittest.TestCase):
    """State, region and range lookups"""

    def test_regions_and_tiers(self):
        self.assertEqual(get_region("OR"), "northwest")
        self.assertEqual(get_region("ny"), "northeast")
        self.assertEqual(get_region("ZZ"), "midwest")
        self.assertEqual(get_region(None), "midwest")
        self.assertEqual(get_market_tier("CA"), "premium")
        self.assertEqual(get_market_tier("WA"), "growth")
        self.assertEqual(get_market_tier("ND"), "value")

    def test_geographic_ranges(self):
        snf = get_geographic_cap_rate("OR", "SNF")
        self.assertEqual((snf["low"], snf["high"]), (0.07, 0.09))
        alf = get_geographic_cap_rate("CA", "alf")
        self.assertEqual((alf["low"], alf["high"]), (0.04, 0.06))

    def test_positional_rating(self):
        self.assertEqual(rate_against_range(25, 10, 20), "above")
        self.assertEqual(rate_against_range(15, 10, 20), "at")
        self.assertEqual(rate_against_range(10, 10, 20), "at")
        self.assertEqual(rate_against_range(5, 10, 20), "below")


class TestOperationalTier(unittest.TestCase):
    """Four equally weighted scores"""

    def test_strong_operator(self):
        section = revenue_facility(5000000, 5000000, ebitdar=2500000, net_income=800000)
        tier, score = score_operational_tier(section, 100)
        self.assertEqual(tier, "strong")
        self.assertEqual(score, 2.5)

    def test_average_operator(self):
        section = revenue_facility(4000000, 3000000, ebitdar=1000000, net_income=100000)
        section.census_data = CensusData(occupancy=0.85)
        tier, score = score_operational_tier(section, 100)
        self.assertEqual(tier, "average")
        self.assertEqual(score, 2.0)

    def test_missing_data_scores_weak(self):
        tier, score = score_operational_tier(FacilitySection("Empty", -1, -1), 0)
        self.assertEqual(tier, "weak")
        self.assertEqual(score, 1.0)


class TestDealBreakers(unittest.TestCase):
    """Every rule reported; thresholds strictly exceeded"""

    def _by_rule(self, section, beds=100):
        return {d.rule: d for d in check_deal_breakers(section, beds)}

    def test_all_rules_reported(self):
        rules = list(self._by_rule(revenue_facility(5000000, 5000000, ebitdar=2000000)))
        self.assertEqual(rules, [
            "Negative Net Operating Income",
            "Negative EBITDA",
            "Revenue Per Bed < $30K/year",
            "Medicaid Concentration > 85%",
            "EBITDAR Margin < 5%",
        ])

    def test_medicaid_at_threshold_not_triggered(self):
        result = self._by_rule(revenue_facility(8500000, 1500000, ebitdar=2000000))
        medicaid = result["Medicaid Concentration > 85%"]
        self.assertFalse(medicaid.triggered)
        self.assertAlmostEqual(medicaid.value, 0.85)
        self.assertEqual(medicaid.threshold, 0.85)

    def test_medicaid_above_threshold_triggered(self):
        result = self._by_rule(revenue_facility(8600000, 1400000, ebitdar=2000000))
        self.assertTrue(result["Medicaid Concentration > 85%"].triggered)
        self.assertAlmostEqual(result["Medicaid Concentration > 85%"].value, 0.86)

    def test_losses_and_thin_margins(self):
        section = revenue_facility(1000000, 1000000, ebitdar=60000, ebitda=-50000, net_income=-200000)
        result = self._by_rule(section, beds=100)
        self.assertTrue(result["Negative Net Operating Income"].triggered)
        self.assertTrue(result["Negative EBITDA"].triggered)
        self.assertTrue(result["Revenue Per Bed < $30K/year"].triggered)
        self.assertTrue(result["EBITDAR Margin < 5%"].triggered)
        self.assertAlmostEqual(result["EBITDAR Margin < 5%"].value, 3.0)

    def test_no_revenue_no_ratio_rules(self):
        result = self._by_rule(FacilitySection("Empty", -1, -1), beds=0)
        self.assertFalse(result["Revenue Per Bed < $30K/year"].triggered)
        self.assertIsNone(result["Medicaid Concentration > 85%"].value)
        self.assertFalse(result["EBITDAR Margin < 5%"].triggered)


class TestCapRateValidation(unittest.TestCase):
    """Geographic range check for cap-rate methods only"""

    def test_snf_rate_outside_oregon_range(self):
        validation = validate_cap_rate(snf_classification(), "OR")
        self.assertEqual(validation.region, "northwest")
        self.assertEqual(validation.asset_type, "SNF")
        self.assertFalse(validation.is_within_range)

    def test_alf_rate_within_range(self):
        alf = FacilityClassification("Maple Court", ALF_SNC_OWNED, EBITDAR_CAP_RATE, 0.06, 60, 0.9)
        validation = validate_cap_rate(alf, "WA")
        self.assertEqual(validation.asset_type, "ALF")
        self.assertTrue(validation.is_within_range)

    def test_multiplier_method_skipped(self):
        leased = FacilityClassification("Echo Pines", LEASED, EBIT_MULTIPLIER, 2.5, 70, 0.9)
        self.assertIsNone(validate_cap_rate(leased, "OR"))


class TestBenchmarkEngine(unittest.TestCase):
    """Per-facility and portfolio benchmarking"""

    def test_facility_benchmark(self):
        section = revenue_facility(5000000, 5000000, ebitdar=2500000, net_income=800000)
        section.census_data = CensusData(total_patient_days=32850)
        valuation = CascadiaFacilityValuation("Gateway Care", SNF_OWNED, 100, "EBITDAR", 2500000,
                                              0.125, "12.5% Cap Rate", 20000000, 200000)
        result = benchmark_facility(section, snf_classification(), valuation)
        comparisons = {c.metric: c for c in result.comparisons}
        self.assertEqual(set(comparisons), {"Revenue Per Bed Day", "EBITDAR Margin",
                                            "Value Per Bed", "Labor Cost %"})
        self.assertEqual(comparisons["EBITDAR Margin"].actual, 25.0)
        self.assertEqual(comparisons["EBITDAR Margin"].rating, "at")
        self.assertEqual(comparisons["Value Per Bed"].rating, "above")
        self.assertTrue(comparisons["Labor Cost %"].lower_is_better)
        self.assertEqual(result.cap_rate_validation.region, "northwest")
        self.assertEqual(result.triggered_deal_breakers, [])

    def test_portfolio_covers_every_classification(self):
        sections = [revenue_facility(5000000, 5000000, ebitdar=2500000, net_income=800000)]
        classifications = [
            snf_classification(),
            FacilityClassification("Echo Pines", LEASED, EBIT_MULTIPLIER, 2.5, 70, 0.9),
        ]
        results = benchmark_portfolio(sections, classifications, states={"gateway care": "CA"})
        self.assertEqual([r.facility_name for r in results], ["Gateway Care", "Echo Pines"])
        self.assertEqual(results[0].cap_rate_validation.region, "west_coast")
        self.assertEqual(results[1].operational_tier, "weak")
        self.assertIsNone(results[1].cap_rate_validation)
        self.assertEqual(len(results[1].deal_breakers), 5)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestKnowledgeBase))
    suite.addTests(loader.loadTestsFromTestCase(TestOperationalTier))
    suite.addTests(loader.loadTestsFromTestCase(TestDealBreakers))
    suite.addTests(loader.loadTestsFromTestCase(TestCapRateValidation))
    suite.addTests(loader.loadTestsFromTestCase(TestBenchmarkEngine))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
