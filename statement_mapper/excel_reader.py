"""
Excel Workbook Reader.

Reads the first non-empty worksheet of an ``.xlsx`` workbook (or a named
one) into rows of plain cell values, ready for
``SchemaSniffer.sniff_rows``.  Layout detection is left to the sniffer, so
workbooks and CSV exports go through exactly the same rules.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import IO, Any, List, Optional, Tuple, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from statement_mapper.logging_setup import get_logger
from statement_mapper.schema import IssueKind, SchemaError, error

logger = get_logger("excel_reader")


def _sheet_rows(ws: Worksheet) -> List[Tuple[Any, ...]]:
    rows: List[Tuple[Any, ...]] = []
    for row in ws.iter_rows(min_row=1, max_row=ws.max_row,
                            max_col=ws.max_column, values_only=True):
        rows.append(tuple(row))
    # Trailing empty rows are common in exported sheets
    while rows and all(v is None or str(v).strip() == "" for v in rows[-1]):
        rows.pop()
    return rows


class ExcelReader:
    """Read worksheet cells from ``.xlsx`` files.

    Parameters
    ----------
    sheet_name:
        Sheet to read.  If None, the first sheet holding any value is used.
    """

    def __init__(self, sheet_name: Optional[str] = None) -> None:
        self.sheet_name = sheet_name

    def read(self, source: Union[str, Path, IO[bytes]]) -> Tuple[str, List[Tuple[Any, ...]]]:
        """Return ``(sheet_name, rows)``.

        Raises
        ------
        SchemaError
            If the workbook cannot be opened, the named sheet does not
            exist, or every sheet is empty.
        """
        try:
            wb = openpyxl.load_workbook(source, data_only=True, read_only=False)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as exc:
            raise SchemaError((
                error(IssueKind.SCHEMA, f"Cannot open workbook: {exc}"),
            )) from exc

        try:
            if self.sheet_name is not None:
                if self.sheet_name not in wb.sheetnames:
                    raise SchemaError((
                        error(
                            IssueKind.SCHEMA,
                            f"Sheet {self.sheet_name!r} not found; "
                            f"available: {wb.sheetnames}",
                        ),
                    ))
                candidates = [self.sheet_name]
            else:
                candidates = list(wb.sheetnames)

            for name in candidates:
                ws = wb[name]
                logger.info(
                    "Reading sheet: %s (%d rows × %d cols)",
                    name,
                    ws.max_row,
                    ws.max_column,
                )
                rows = _sheet_rows(ws)
                if rows:
                    return name, rows
        finally:
            wb.close()

        raise SchemaError((error(IssueKind.SCHEMA, "Workbook has no non-empty sheet"),))
