"""
Export Utilities

Flatten filtered row sets into CSV text or an XLSX workbook for download.
"""

import csv
import json
from datetime import date, datetime
from enum import Enum
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

import pandas as pd
from openpyxl.utils import get_column_letter

logger = logging.getLogger(__name__)

CSV_MIME = "text/csv"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MIN_COLUMN_WIDTH = 15

# A column is either a row key (also used as header) or (header, key)
Column = Union[str, Sequence[str]]


class ExportError(Exception):
    """Raised when an export cannot be produced"""
    pass


def stringify_cell(value: Any) -> str:
    """
    Best-effort text for one cell.

    None -> "", dict -> JSON, list/tuple -> "; "-joined, bool -> "true"/"false".
    """
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict):
        return json.dumps(value, default=str, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "; ".join(stringify_cell(item) for item in value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _split_columns(columns: Sequence[Column]):
    headers, keys = [], []
    for column in columns:
        if isinstance(column, str):
            headers.append(column)
            keys.append(column)
        else:
            header, key = column
            headers.append(header)
            keys.append(key)
    return headers, keys


def rows_to_frame(rows: List[Dict[str, Any]], columns: Sequence[Column]) -> pd.DataFrame:
    """
    Build a string-only DataFrame in declared column order.

    Args:
        rows: Row dicts (missing keys become empty cells)
        columns: Column keys, or (header, key) pairs

    Returns:
        DataFrame whose headers are the column headers
    """
    headers, keys = _split_columns(columns)
    data = [[stringify_cell(row.get(key)) for key in keys] for row in rows]
    return pd.DataFrame(data, columns=headers, dtype=str)


def to_csv_text(rows: List[Dict[str, Any]], columns: Sequence[Column]) -> str:
    """
    CSV text with a header row and every field quoted.

    Embedded quotes are doubled; lines end with "\\n".
    """
    try:
        frame = rows_to_frame(rows, columns)
        return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    except (TypeError, ValueError) as e:
        raise ExportError(f"Failed to build CSV: {e}")


def build_workbook(
    rows: List[Dict[str, Any]],
    columns: Sequence[Column],
    sheet_name: str = "Sheet1"
) -> BytesIO:
    """
    XLSX workbook with one sheet, one row per record.

    Each column is as wide as its header, at least 15 characters.

    Returns:
        BytesIO positioned at the start
    """
    headers, _ = _split_columns(columns)
    # Excel limits sheet names to 31 characters
    sheet_name = (sheet_name or "Sheet1")[:31]

    buffer = BytesIO()
    try:
        frame = rows_to_frame(rows, columns)
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
            worksheet = writer.sheets[sheet_name]
            for index, header in enumerate(headers, start=1):
                width = max(len(header), MIN_COLUMN_WIDTH)
                worksheet.column_dimensions[get_column_letter(index)].width = width
    except (TypeError, ValueError, OSError) as e:
        raise ExportError(f"Failed to build workbook: {e}")

    buffer.seek(0)
    logger.info(f"Built workbook '{sheet_name}' with {len(rows)} rows")
    return buffer


def export_filename(
    entity_label: str,
    dealer_display_name: str,
    ext: str,
    today: Optional[date] = None
) -> str:
    """
    Download file name, e.g. ``Yard_Stock_Acme_RV_2024-03-01.csv``.
    """
    today = today or date.today()
    entity = "_".join(str(entity_label).split())
    dealer = "_".join(str(dealer_display_name).split())
    return f"{entity}_{dealer}_{today.isoformat()}.{ext.lstrip('.')}"
