"""Spreadsheet addressing and transport.

A1 notation helpers plus a CSV-file backed transport. A sheet id maps to
`<sheets_directory>/<sheet_id>.csv`; row 1 of the CSV is sheet row 1.
"""

import csv
import io
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class SheetError(Exception):
    """Raised by a transport when a sheet cannot be read or written."""


@dataclass(frozen=True)
class CellUpdate:
    """One value to write at an A1 address such as 'Sheet1!C5'."""
    address: str
    value: str


class SpreadsheetTransport(Protocol):
    """Read a range of rows and batch-write cell values."""

    def read_range(self, sheet_id: str, a1_range: str) -> List[List[str]]: ...

    def batch_write(self, sheet_id: str, updates: Sequence[CellUpdate]) -> int: ...


A1_CELL_PATTERN = re.compile(r"^([A-Z]+)(\d+)?$")


def column_letter(index: int) -> str:
    """Convert a 0-based column index to its letter (0 -> A, 26 -> AA)."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    letters = ""
    num = index
    while num >= 0:
        letters = chr(num % 26 + 65) + letters
        num = num // 26 - 1
    return letters


def column_index(letters: str) -> int:
    """Inverse of column_letter ('A' -> 0, 'AA' -> 26)."""
    if not letters or not letters.isalpha():
        raise ValueError(f"Invalid column letters: {letters!r}")
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - 64)
    return index - 1


def cell_address(sheet_name: str, column: int, row: int) -> str:
    """A1 address for a 0-based column and 1-based row."""
    if row < 1:
        raise ValueError(f"Row must be >= 1, got {row}")
    return f"{sheet_name}!{column_letter(column)}{row}"


def split_sheet(a1: str) -> Tuple[Optional[str], str]:
    """Split 'Sheet1!A:C' into ('Sheet1', 'A:C'); no sheet part gives None."""
    if "!" in a1:
        sheet, _, ref = a1.rpartition("!")
        return sheet.strip("'") or None, ref
    return None, a1


def parse_cell(ref: str) -> Tuple[int, Optional[int]]:
    """
    Parse 'C5' into (2, 5) and 'C' into (2, None).

    Raises:
        ValueError: for malformed references
    """
    match = A1_CELL_PATTERN.match(ref.strip().upper())
    if not match:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    column = column_index(match.group(1))
    row = int(match.group(2)) if match.group(2) else None
    return column, row


def parse_range(a1_range: str) -> Tuple[int, int, Optional[int], Optional[int]]:
    """
    Parse an A1 range into (first_col, last_col, first_row, last_row).

    Rows are 1-based and None when the range covers whole columns.
    """
    _, ref = split_sheet(a1_range)
    start, _, end = ref.partition(":")
    first_col, first_row = parse_cell(start)
    if end:
        last_col, last_row = parse_cell(end)
    else:
        last_col, last_row = first_col, first_row
    return first_col, last_col, first_row, last_row


def _trim_trailing_empty(cells: List[str]) -> List[str]:
    while cells and cells[-1] == "":
        cells.pop()
    return cells


class CsvSheetTransport:
    """Spreadsheet transport over local CSV files."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, sheet_id: str) -> str:
        if not sheet_id or os.sep in sheet_id or sheet_id.startswith("."):
            raise SheetError(f"Invalid sheet id: {sheet_id!r}")
        return os.path.join(self.directory, f"{sheet_id}.csv")

    def _load(self, sheet_id: str) -> List[List[str]]:
        path = self.path_for(sheet_id)
        try:
            with open(path, newline="", encoding="utf-8") as f:
                return [list(row) for row in csv.reader(f)]
        except OSError as e:
            raise SheetError(f"Cannot read sheet '{sheet_id}': {e}") from e
        except csv.Error as e:
            raise SheetError(f"Malformed sheet '{sheet_id}': {e}") from e

    def read_range(self, sheet_id: str, a1_range: str) -> List[List[str]]:
        """
        Read the rows covered by an A1 range.

        Row i of the result is sheet row first_row + i, so with whole-column
        ranges index 0 is row 1. Trailing empty cells are dropped, like the
        hosted spreadsheet APIs do.

        Raises:
            SheetError: if the sheet cannot be read
        """
        try:
            first_col, last_col, first_row, last_row = parse_range(a1_range)
        except ValueError as e:
            raise SheetError(str(e)) from e

        rows = self._load(sheet_id)
        start = (first_row or 1) - 1
        stop = last_row if last_row is not None else len(rows)

        values = []
        for row in rows[start:stop]:
            values.append(_trim_trailing_empty(row[first_col:last_col + 1]))
        return values

    def batch_write(self, sheet_id: str, updates: Sequence[CellUpdate]) -> int:
        """
        Apply all updates in one rewrite of the file.

        Returns:
            Number of cells written

        Raises:
            SheetError: if the sheet cannot be read or written
        """
        rows = self._load(sheet_id)
        for update in updates:
            try:
                column, row = parse_cell(split_sheet(update.address)[1])
            except ValueError as e:
                raise SheetError(str(e)) from e
            if row is None:
                raise SheetError(f"Update address needs a row: {update.address!r}")

            while len(rows) < row:
                rows.append([])
            cells = rows[row - 1]
            while len(cells) <= column:
                cells.append("")
            cells[column] = update.value

        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerows(rows)

        path = self.path_for(sheet_id)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "w", newline="", encoding="utf-8") as f:
                f.write(buffer.getvalue())
            os.replace(tmp_path, path)
        except OSError as e:
            raise SheetError(f"Cannot write sheet '{sheet_id}': {e}") from e

        logger.info(f"Wrote {len(updates)} cells to sheet '{sheet_id}'")
        return len(updates)
