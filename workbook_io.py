"""
Workbook I/O
Reads Excel/CSV files into Sheet grids and exports an extraction result
to a multi-sheet Excel workbook
"""

import io
import logging
import math
import zipfile
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional, Union

import numpy as np
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from extraction_models import SmartExtractionResult
from sheet_utils import Cell, Row, Sheet, Workbook

logger = logging.getLogger(__name__)


class WorkbookError(ValueError):
    """A workbook could not be read"""


class EmptyWorkbookError(WorkbookError):
    """A workbook has no sheets or no non-empty cells"""


# ============================================================================
# READING
# ============================================================================

def to_cell(value: Any) -> Cell:
    """Coerce a pandas cell to str / int / float / None"""
    if value is None:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date)):
        if pd.isna(value):
            return None
        return value.strftime("%b-%y")
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (np.integer, int)):
        return int(value)
    if isinstance(value, (np.floating, float)):
        return None if math.isnan(value) else float(value)
    text = str(value)
    return text if text.strip() else None


def frame_to_rows(frame: pd.DataFrame) -> List[Row]:
    return [[to_cell(v) for v in record] for record in frame.itertuples(index=False, name=None)]


def read_workbook(source: Union[str, Path, io.BytesIO], filename: Optional[str] = None,
                  document_id: Optional[str] = None) -> Workbook:
    """
    Read an .xlsx/.xlsm or .csv file into a Workbook

    Args:
        source: Path or binary buffer
        filename: Display name; required to pick the CSV reader for buffers
        document_id: Identifier; defaults to the filename

    Returns:
        Workbook with one Sheet per worksheet (header=None, 0-based grid)

    Raises:
        WorkbookError: The file is missing or cannot be parsed
    """
    name = filename or (Path(source).name if isinstance(source, (str, Path)) else "workbook")
    try:
        if name.lower().endswith(".csv"):
            frames = {Path(name).stem: pd.read_csv(source, header=None)}
        else:
            frames = pd.read_excel(source, sheet_name=None, header=None, engine="openpyxl")
    except (OSError, ValueError, KeyError, InvalidFileException, zipfile.BadZipFile) as e:
        raise WorkbookError(f"Cannot read workbook {name}: {e}") from e

    sheets = [Sheet(str(sheet_name), frame_to_rows(frame)) for sheet_name, frame in frames.items()]
    logger.info("Read %s: %d sheets", name, len(sheets))
    return Workbook(document_id=document_id or name, filename=name, sheets=sheets)


# ============================================================================
# EXPORT
# ============================================================================

def export_result_to_excel(result: SmartExtractionResult) -> bytes:
    """Generate an Excel export of an extraction result"""

    output = io.BytesIO()

    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        # Summary sheet
        valuation = result.cascadia_valuation
        total = valuation.portfolio_total if valuation else None
        summary_df = pd.DataFrame({
            "Metric": ["Files", "Facilities Classified", "Portfolio Value", "Total Beds",
                       "Value Per Bed", "Confidence", "Processing Time (ms)"],
            "Value": [
                len(result.file_classifications),
                len(result.facility_classifications),
                f"${total.total_value:,.0f}" if total else "",
                f"{total.total_beds:,.0f}" if total else "",
                f"${total.avg_value_per_bed:,.0f}" if total else "",
                f"{result.confidence:.2f}",
                f"{result.processing_time_ms:.0f}",
            ],
        })
        summary_df.to_excel(writer, sheet_name="Summary", index=False)

        # File classifications sheet
        files_df = pd.DataFrame([
            {"Document": c.document_id, "Filename": c.filename, "Type": c.file_type,
             "Confidence": c.confidence, "Priority": c.extraction_priority}
            for c in result.file_classifications
        ])
        files_df.to_excel(writer, sheet_name="Files", index=False)

        # T13 facility summaries
        if result.t13_data and result.t13_data.facilities:
            t13_df = pd.DataFrame([
                dict(Facility=f.facility_name, Sheet=f.sheet_name, **f.summary_metrics.to_dict())
                for f in result.t13_data.facilities
            ])
            t13_df.to_excel(writer, sheet_name="T13 Facilities", index=False)

        # Valuation and sensitivity sheets
        if valuation and valuation.facilities:
            valuation_df = pd.DataFrame([f.to_dict() for f in valuation.facilities])
            valuation_df.to_excel(writer, sheet_name="Valuation", index=False)

            sensitivity_df = pd.DataFrame([r.to_dict() for r in valuation.sensitivity.rows])
            sensitivity_df.to_excel(writer, sheet_name="Sensitivity", index=False)

        # Benchmarks sheet
        if result.benchmarks:
            bench_df = pd.DataFrame([
                {"Facility": b.facility_name, "Tier": b.operational_tier, "Score": b.tier_score,
                 "Deal Breakers": ", ".join(d.rule for d in b.triggered_deal_breakers)}
                for b in result.benchmarks
            ])
            bench_df.to_excel(writer, sheet_name="Benchmarks", index=False)

        # Warnings sheet
        warnings_df = pd.DataFrame({"Warning": list(result.warnings)})
        warnings_df.to_excel(writer, sheet_name="Warnings", index=False)

    output.seek(0)
    return output.getvalue()


__all__ = [
    "WorkbookError", "EmptyWorkbookError", "read_workbook", "frame_to_rows",
    "to_cell", "export_result_to_excel",
]
