"""
Test Suite for the Asset Valuation Parser
Two-phase section assignment, thousands scaling and LOI enrichment
"""

import unittest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from asset_valuation_parser import (
    assign_property_types, auto_detect_type, is_section_label, parse_asset_valuation,
)
from extraction_models import ALF_SNC_OWNED, LEASED, SNF_OWNED, AssetValuationEntry
from sheet_builders import asset_valuation_sheet, av_row
from sheet_utils import Sheet


class TestSectionAssignment(unittest.TestCase):
    """Entries take the type of the nearest section boundary after them"""

    def setUp(self):
        sheet = asset_valuation_sheet([
            av_row("Alpha Care", 100, 1250000, 0.125),
            av_row("Bravo Heights", 90, 1000000, 0.125),
            ["SNF - Owned"],
            av_row("Delta Gardens", 80, 400000, 2.5),
            av_row("Echo Pines", 70, 300000, 2.75),
            ["Leased"],
        ])
        self.result = parse_asset_valuation([sheet])
        self.by_name = {e.facility_name: e for e in self.result.entries}

    def test_entries_before_first_boundary(self):
        self.assertEqual(self.by_name["Alpha Care"].property_type, SNF_OWNED)
        self.assertEqual(self.by_name["Bravo Heights"].property_type, SNF_OWNED)

    def test_entries_before_second_boundary(self):
        self.assertEqual(self.by_name["Delta Gardens"].property_type, LEASED)
        self.assertEqual(self.by_name["Echo Pines"].property_type, LEASED)

    def test_boundary_rows_are_not_entries(self):
        self.assertEqual(len(self.result.entries), 4)
        self.assertNotIn("SNF - Owned", self.by_name)

    def test_metric_column_follows_rate_kind(self):
        alpha = self.by_name["Alpha Care"]
        self.assertEqual(alpha.cap_rate, 0.125)
        self.assertIsNone(alpha.multiplier)
        self.assertEqual(alpha.ebitda_by_year, {"2025": 1250000})
        self.assertEqual(alpha.latest_value, 10000000)

        delta = self.by_name["Delta Gardens"]
        self.assertEqual(delta.multiplier, 2.5)
        self.assertIsNone(delta.cap_rate)
        self.assertEqual(delta.net_income_by_year, {"2025": 400000})
        self.assertEqual(delta.ebitda_by_year, {})

    def test_category_and_portfolio_totals(self):
        categories = {c.category: c for c in self.result.category_totals}
        self.assertEqual(categories[SNF_OWNED].facility_count, 2)
        self.assertEqual(categories[SNF_OWNED].total_beds, 190)
        self.assertEqual(categories[LEASED].valuation_method, "NI × Multiplier")
        self.assertEqual(self.result.portfolio_total.facility_count, 4)
        self.assertEqual(self.result.portfolio_total.total_beds, 340)

    def test_subtotal_row_is_a_boundary(self):
        sheet = asset_valuation_sheet([
            av_row("Alpha Care", 100, 1250000, 0.125),
            ["Total SNF Owned", 100, 0, 1250000, 0.125, 10000000, 100000],
            av_row("Foxtrot Place", 60, 480000, 0.08, snc=0),
            ["AL/IL Subtotal", 60],
        ])
        result = parse_asset_valuation([sheet])
        types = {e.facility_name: e.property_type for e in result.entries}
        self.assertEqual(types, {"Alpha Care": SNF_OWNED, "Foxtrot Place": ALF_SNC_OWNED})

    def test_section_label_vocabulary(self):
        self.assertTrue(is_section_label("SNF - Owned"))
        self.assertTrue(is_section_label("Leased Facilities"))
        self.assertTrue(is_section_label("AL/IL"))
        self.assertFalse(is_section_label("Gateway Care"))
        self.assertFalse(is_section_label("Leased Gateway"))


class TestAutoDetection(unittest.TestCase):
    """Typing of entries after the last boundary"""

    def _entry(self, cap_rate=None, multiplier=None, snc=None):
        return AssetValuationEntry("Facility", "Unassigned", 100, snc_percent=snc,
                                   cap_rate=cap_rate, multiplier=multiplier)

    def test_rules_in_order(self):
        self.assertEqual(auto_detect_type(self._entry(multiplier=2.5)), LEASED)
        self.assertEqual(auto_detect_type(self._entry(cap_rate=0.125)), SNF_OWNED)
        self.assertEqual(auto_detect_type(self._entry(cap_rate=0.12)), SNF_OWNED)
        self.assertEqual(auto_detect_type(self._entry(cap_rate=0.09)), ALF_SNC_OWNED)
        self.assertEqual(auto_detect_type(self._entry(cap_rate=0.2, snc=0.4)), ALF_SNC_OWNED)
        self.assertEqual(auto_detect_type(self._entry(cap_rate=0.2)), SNF_OWNED)

    def test_count_of_auto_detected_entries(self):
        entries = [self._entry(cap_rate=0.125), self._entry(multiplier=2.5)]
        entries[0].row_index, entries[1].row_index = 1, 5
        auto = assign_property_types(entries, [(3, ALF_SNC_OWNED)])
        self.assertEqual(auto, 1)
        self.assertEqual(entries[0].property_type, ALF_SNC_OWNED)
        self.assertEqual(entries[1].property_type, LEASED)

    def test_warning_for_trailing_entries(self):
        result = parse_asset_valuation([asset_valuation_sheet()])
        self.assertTrue(all(e.property_type == SNF_OWNED for e in result.entries))
        self.assertTrue(any("after the last section boundary" in w for w in result.warnings))

    def test_cap_rate_and_multiplier_exclusive(self):
        with self.assertRaises(ValueError):
            self._entry(cap_rate=0.125, multiplier=2.5)


class TestThousandsScale(unittest.TestCase):
    """Portfolio-wide value-per-bed sanity check"""

    def test_small_values_scaled(self):
        sheet = asset_valuation_sheet([av_row("Alpha Care", 100, 3125, 0.125)])
        result = parse_asset_valuation([sheet])
        entry = result.entries[0]
        self.assertTrue(result.scaled_to_thousands)
        self.assertEqual(entry.latest_value, 25000000)
        self.assertEqual(entry.latest_value_per_bed, 250000)
        self.assertEqual(entry.latest_ebitda, 3125000)
        self.assertIn("Asset Valuation: values appear to be in thousands; scaled x1000", result.warnings)

    def test_whole_dollars_not_scaled(self):
        sheet = asset_valuation_sheet([av_row("Alpha Care", 100, 3125000, 0.125)])
        result = parse_asset_valuation([sheet])
        self.assertFalse(result.scaled_to_thousands)
        self.assertEqual(result.entries[0].latest_value_per_bed, 250000)

    def test_bed_weighted_average_decides_scale(self):
        sheet = asset_valuation_sheet([
            av_row("Alpha Care", 10, 12500, 0.125),
            av_row("Bravo Heights", 1000, 125000, 0.125),
        ])
        result = parse_asset_valuation([sheet])
        self.assertTrue(result.scaled_to_thousands)
        by_name = {e.facility_name: e for e in result.entries}
        self.assertEqual(by_name["Bravo Heights"].latest_value, 1000000000)


class TestWorkbookHandling(unittest.TestCase):
    """Sheet selection, deduplication and LOI enrichment"""

    def test_loi_sheet_supplies_location(self):
        loi = Sheet("LOI", [["Facility", "City", "State"], ["Alpha Care", "Salem", "or"]])
        sheet = asset_valuation_sheet([av_row("Alpha Care", 100, 1250000, 0.125)])
        result = parse_asset_valuation([sheet, loi])
        self.assertEqual(len(result.entries), 1)
        self.assertEqual(result.entries[0].city, "Salem")
        self.assertEqual(result.entries[0].state, "OR")

    def test_duplicates_across_sheets_dropped(self):
        first = asset_valuation_sheet([av_row("Alpha Care", 100, 1250000, 0.125)], name="Valuation 2025")
        second = asset_valuation_sheet([av_row("ALPHA CARE", 100, 1000000, 0.125)], name="Valuation Draft")
        result = parse_asset_valuation([first, second])
        self.assertEqual(len(result.entries), 1)
        self.assertEqual(result.entries[0].latest_ebitda, 1250000)

    def test_duplicates_differing_in_spacing_dropped(self):
        first = asset_valuation_sheet([av_row("Alpha Care", 100, 1250000, 0.125)], name="Valuation 2025")
        second = asset_valuation_sheet([av_row(" Alpha  Care ", 100, 1000000, 0.125)], name="Valuation Draft")
        result = parse_asset_valuation([first, second])
        self.assertEqual([e.facility_name for e in result.entries], ["Alpha Care"])

    def test_no_entries_warns(self):
        result = parse_asset_valuation([Sheet("Valuation", [["Property", "Beds"]])])
        self.assertEqual(result.entries, [])
        self.assertIn("Asset Valuation: no valuation entries found", result.warnings)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestSectionAssignment))
    suite.addTests(loader.loadTestsFromTestCase(TestAutoDetection))
    suite.addTests(loader.loadTestsFromTestCase(TestThousandsScale))
    suite.addTests(loader.loadTestsFromTestCase(TestWorkbookHandling))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
