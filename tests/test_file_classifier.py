"""
Test Suite for File Classification and GL Mapping
Covers content scoring, priority ordering and the read-only GL lookup
"""

import dataclasses
import random
import unittest
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from extraction_models import EXTRACTION_PRIORITY, FileClassification
from file_classifier import classify_excel_file, score_sheet
from gl_mapping_parser import EMPTY_MAPPING, categorize_by_gl_code, parse_gl_mapping
from sheet_builders import asset_valuation_sheet, flat_t13_sheet, gl_mapping_sheet
from sheet_utils import Sheet
from smart_excel import build_work_list


class TestFileClassifier(unittest.TestCase):
    """Content heuristics per file type"""

    def test_t13_workbook_is_opco_review(self):
        result = classify_excel_file([flat_t13_sheet()], "doc-1", "opco.xlsx")
        self.assertEqual(result.file_type, "opco_review")
        self.assertEqual(result.extraction_priority, 1)
        self.assertEqual(result.confidence, 1.0)
        self.assertTrue(any("T13 sheet name" in i for i in result.indicators))

    def test_valuation_workbook_is_asset_valuation(self):
        result = classify_excel_file([asset_valuation_sheet()], "doc-2", "valuation.xlsx")
        self.assertEqual(result.file_type, "asset_valuation")
        self.assertEqual(result.extraction_priority, 2)

    def test_mapping_workbook_is_gl_mapping(self):
        result = classify_excel_file([gl_mapping_sheet()], "doc-3", "mapping.xlsx")
        self.assertEqual(result.file_type, "gl_mapping")
        self.assertEqual(result.extraction_priority, 0)
        self.assertAlmostEqual(result.confidence, 20 / 50.0)

    def test_portfolio_scenario_sheet(self):
        sheet = Sheet("Current State", [["Entity", "Annual"], ["Summary", 100]])
        result = classify_excel_file([sheet], "doc-4", "model.xlsx")
        self.assertEqual(result.file_type, "portfolio_model")
        self.assertEqual(result.extraction_priority, 3)

    def test_below_threshold_is_unknown(self):
        sheet = Sheet("Notes", [["Meeting notes"], ["call the broker"]])
        result = classify_excel_file([sheet], "doc-5", "notes.xlsx")
        self.assertEqual(result.file_type, "unknown")
        self.assertEqual(result.extraction_priority, 99)
        self.assertEqual(result.confidence, 0.0)

    def test_sheet_summary_lists_every_sheet(self):
        sheets = [flat_t13_sheet(), Sheet("Notes", [["x"]])]
        result = classify_excel_file(sheets, "doc-6", "opco.xlsx")
        self.assertEqual([s["name"] for s in result.sheet_summary], ["T13 Dollars and PPD", "Notes"])
        self.assertEqual(result.sheet_summary[0]["suggested_type"], "opco_review")
        self.assertEqual(result.sheet_summary[1]["suggested_type"], "unknown")

    def test_score_sheet_reports_scores_for_every_type(self):
        scores, _ = score_sheet(flat_t13_sheet())
        self.assertEqual(set(scores), {"opco_review", "asset_valuation", "portfolio_model", "gl_mapping"})
        self.assertGreater(scores["opco_review"], scores["asset_valuation"])

    def test_classification_is_immutable(self):
        result = classify_excel_file([flat_t13_sheet()], "doc-7", "opco.xlsx")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            result.file_type = "gl_mapping"

    def test_invalid_file_type_rejected(self):
        with self.assertRaises(ValueError):
            FileClassification("doc", "f.xlsx", "spreadsheet", 0.5)


class TestPriorityOrdering(unittest.TestCase):
    """Work list ordering by extraction priority"""

    def _classification(self, document_id, file_type):
        return FileClassification(document_id, f"{document_id}.xlsx", file_type, 0.5)

    def test_priority_table(self):
        self.assertEqual(EXTRACTION_PRIORITY["gl_mapping"], 0)
        self.assertEqual(EXTRACTION_PRIORITY["opco_review"], 1)
        self.assertEqual(EXTRACTION_PRIORITY["asset_valuation"], 2)
        self.assertEqual(EXTRACTION_PRIORITY["portfolio_model"], 3)
        self.assertEqual(EXTRACTION_PRIORITY["unknown"], 99)

    def test_work_list_sorted_by_priority_then_position(self):
        classifications = [
            self._classification("av", "asset_valuation"),
            self._classification("opco-a", "opco_review"),
            self._classification("unknown", "unknown"),
            self._classification("gl", "gl_mapping"),
            self._classification("opco-b", "opco_review"),
        ]
        order = [classifications[i].document_id for i in build_work_list(classifications)]
        self.assertEqual(order, ["gl", "opco-a", "opco-b", "av", "unknown"])

    def test_type_order_stable_under_shuffle(self):
        types = ["portfolio_model", "asset_valuation", "opco_review", "gl_mapping", "unknown"]
        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(types)
            rng.shuffle(shuffled)
            classifications = [self._classification(t, t) for t in shuffled]
            order = [classifications[i].file_type for i in build_work_list(classifications)]
            self.assertEqual(order, ["gl_mapping", "opco_review", "asset_valuation",
                                     "portfolio_model", "unknown"])


class TestGLMapping(unittest.TestCase):
    """GL mapping parsing and read-only lookups"""

    def setUp(self):
        self.mapping = parse_gl_mapping([gl_mapping_sheet()])

    def test_entries_parsed_from_header_columns(self):
        self.assertEqual(len(self.mapping), 5)
        entry = self.mapping.get("400100")
        self.assertEqual(entry.label, "Medicare Revenue")
        self.assertEqual(entry.category, "SNF Revenue")
        self.assertEqual(entry.subcategory, "medicare_revenue")

    def test_dash_suffix_falls_back_to_base_code(self):
        self.assertEqual(self.mapping.get("400200-05").label, "Medicaid Revenue")
        self.assertEqual(self.mapping.get("600300-01").label, "Salaries - Nursing")
        self.assertIn("400100", self.mapping)
        self.assertIsNone(self.mapping.get("999999"))

    def test_mapping_is_read_only(self):
        with self.assertRaises(TypeError):
            self.mapping.entries["123456"] = None
        with self.assertRaises(dataclasses.FrozenInstanceError):
            self.mapping.get("400100").label = "changed"

    def test_prefix_categories(self):
        self.assertEqual(categorize_by_gl_code("400900"), "SNF Revenue")
        self.assertEqual(categorize_by_gl_code("421000"), "ALF Revenue")
        self.assertEqual(categorize_by_gl_code("455000"), "Revenue")
        self.assertEqual(categorize_by_gl_code("611000"), "Therapy")
        self.assertEqual(categorize_by_gl_code("690000"), "Expense")
        self.assertEqual(categorize_by_gl_code("123456"), "Unknown")

    def test_category_defaults_from_prefix_without_category_column(self):
        sheet = Sheet("Crosswalk", [["GL Code", "Description"], ["611000", "Therapy Revenue"]])
        mapping = parse_gl_mapping([sheet])
        self.assertEqual(mapping.get("611000").category, "Therapy")

    def test_empty_input_gives_empty_mapping(self):
        mapping = parse_gl_mapping([])
        self.assertIs(mapping, EMPTY_MAPPING)
        self.assertFalse(mapping)
        self.assertEqual(len(mapping), 0)


def run_tests():
    """Run all tests and report results"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestFileClassifier))
    suite.addTests(loader.loadTestsFromTestCase(TestPriorityOrdering))
    suite.addTests(loader.loadTestsFromTestCase(TestGLMapping))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
