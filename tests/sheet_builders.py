"""
Synthetic workbook grids shared by the smart-excel test suites
"""

import os
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sheet_utils import Sheet, Workbook

T13_HEADER = ["Facility", "GL Code", "Description", "Actual", "PPD", "Budget", "Budget PPD"]

DEFAULT_FACILITIES = [
    ("Gateway Care", 10000000, 2000000),
    ("Ridgeview Manor", 10000000, 2000000),
    ("Firwood Lodge", 10000000, 2000000),
]


def flat_t13_rows(name, revenue, ebitdar, net_income=1000000, medicaid_share=0.6):
    """Seven GL-coded rows for one facility of a flat T13 table"""
    medicaid = revenue * medicaid_share
    return [
        [name, "400100", "Medicare Revenue", revenue - medicaid, 450.0, revenue - medicaid, 440.0],
        [name, "400200", "Medicaid Revenue", medicaid, 250.0, medicaid, 245.0],
        [name, "499999", "Total Operating Revenue", revenue, 310.0, revenue, 305.0],
        [name, "600300", "Salaries and Wages", revenue * 0.5, 155.0, revenue * 0.5, 150.0],
        [name, "699999", "Total Operating Expenses", revenue - ebitdar, 250.0, revenue - ebitdar, 245.0],
        [name, "899000", "EBITDAR", ebitdar, 62.0, ebitdar, 60.0],
        [name, "899100", "Net Income", net_income, 31.0, net_income, 30.0],
    ]


def flat_t13_sheet(facilities=DEFAULT_FACILITIES, name="T13 Dollars and PPD"):
    rows = [list(T13_HEADER)]
    for facility, revenue, ebitdar in facilities:
        rows.extend(flat_t13_rows(facility, revenue, ebitdar))
    return Sheet(name, rows)


AV_HEADER = ["Property", "Beds", "SNC %", "EBITDA / NI 2025", "Cap Rate", "Value 2025", "$/Bed"]


def av_row(name, beds, metric, rate, snc=0):
    """One valuation row; a rate above 1 is a multiplier"""
    value = metric * rate if rate > 1 else metric / rate
    return [name, beds, snc, metric, rate, value, value / beds]


def asset_valuation_sheet(rows=None, name="Asset Valuation"):
    if rows is None:
        rows = [av_row(facility, 100, ebitdar, 0.125) for facility, _, ebitdar in DEFAULT_FACILITIES]
    return Sheet(name, [list(AV_HEADER)] + rows)


def gl_mapping_sheet(name="GL Mapping"):
    return Sheet(name, [
        ["GL Code", "Description", "Category"],
        ["400100", "Medicare Revenue", "SNF Revenue"],
        ["400200", "Medicaid Revenue", "SNF Revenue"],
        ["420100", "ALF Private Revenue", "ALF Revenue"],
        ["600300", "Salaries and Wages", "Administration"],
        ["600300-01", "Salaries - Nursing", "Administration"],
    ])


def workbook(document_id, *sheets):
    return Workbook(document_id=document_id, filename=f"{document_id}.xlsx", sheets=list(sheets))


def opco_workbook(facilities=DEFAULT_FACILITIES):
    return workbook("opco_review", flat_t13_sheet(facilities))


def valuation_workbook(rows=None):
    return workbook("asset_valuation", asset_valuation_sheet(rows))


def mapping_workbook():
    return workbook("gl_mapping", gl_mapping_sheet())
