"""
Binary decoders for spreadsheets and PDFs.

Spreadsheets are read with pandas (openpyxl for .xlsx, xlrd for .xls); PDF
text comes from pdfplumber. Decoders raise on unreadable input; the pipeline
catches and degrades per document.
"""

import io
from pathlib import Path
from typing import Any, Dict, List, Tuple

import logging

import pandas as pd
import pdfplumber

from invoice_recon.utils import to_text

logger = logging.getLogger(__name__)

EXCEL_ENGINES = {'.xlsx': 'openpyxl', '.xlsm': 'openpyxl', '.xls': 'xlrd'}


def _frames(data: bytes, filename: str) -> List[pd.DataFrame]:
    suffix = Path(filename).suffix.lower()
    if suffix == '.csv':
        return [pd.read_csv(io.BytesIO(data), dtype=object, encoding='utf-8-sig', keep_default_na=False)]
    engine = EXCEL_ENGINES.get(suffix)
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, dtype=object, engine=engine)
    return list(sheets.values())


def _records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    frame = frame.dropna(how='all')
    rows = []
    for record in frame.to_dict(orient='records'):
        rows.append({str(key): ('' if value is None or to_text(value) == '' else value)
                     for key, value in record.items()})
    return rows


def read_sheets(data: bytes, filename: str) -> List[List[Dict[str, Any]]]:
    """
    Decode a spreadsheet into sheets of row records.

    Args:
        data: File content.
        filename: Original name; the extension selects the reader.

    Returns:
        One list of row dicts per sheet, keyed by header, missing cells "".
    """
    sheets = [_records(frame) for frame in _frames(data, filename)]
    logger.debug(f"Decoded {len(sheets)} sheet(s) from {filename}")
    return sheets


def sheet_to_csv(data: bytes, filename: str) -> str:
    """Render the first sheet as CSV text."""
    frames = _frames(data, filename)
    if not frames:
        return ''
    return frames[0].to_csv(index=False)


def read_pdf_text(data: bytes) -> Tuple[int, str]:
    """
    Extract all text content from a PDF.

    Returns:
        Page count and the concatenated text of every page, carriage
        returns removed.
    """
    text_parts = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        page_count = len(pdf.pages)
        for page in pdf.pages:
            text = page.extract_text()
            if text:
                text_parts.append(text)
    return page_count, '\n'.join(text_parts).replace('\r', '')
