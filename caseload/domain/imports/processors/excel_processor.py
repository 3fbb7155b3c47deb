import io
import logging
from typing import List

import pandas as pd

from .csv_processor import TabularContent, build_headers

logger = logging.getLogger(__name__)


def _cell_value(value):
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    return value


def process_excel(file_content: bytes) -> TabularContent:
    """
    Read the first sheet of a workbook row-wise.

    The first row is the header row; remaining rows become data rows with
    NaN/NaT cells converted to None.
    """
    try:
        df = pd.read_excel(io.BytesIO(file_content), sheet_name=0, header=None, dtype=object, engine='openpyxl')
    except Exception:
        # Fallback to the default pandas engine (legacy .xls workbooks)
        try:
            df = pd.read_excel(io.BytesIO(file_content), sheet_name=0, header=None, dtype=object)
        except Exception as e:
            raise ValueError(f"Could not read Excel file: {e}") from e

    values: List[List[object]] = [
        [_cell_value(cell) for cell in row]
        for row in df.itertuples(index=False, name=None)
    ]
    if not values:
        return TabularContent(headers=[], raw_headers=[], rows=[])

    raw_headers = values[0]
    headers, _, _ = build_headers(raw_headers)
    rows = [row for row in values[1:] if any(cell is not None for cell in row)]

    logger.info("Processed Excel sheet: %d data rows, columns: %s", len(rows), headers)
    return TabularContent(headers=headers, raw_headers=list(raw_headers), rows=rows)
