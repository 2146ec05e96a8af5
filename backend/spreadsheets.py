"""Excel reading and writing.

The importer and statistics code only ever see a 2-D grid of strings and
``SheetModel`` objects; openpyxl details stay in this module.
"""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from errors import ValidationError

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HEADER_FILL = PatternFill(fill_type="solid", fgColor="FF4472C4")
HEADER_FONT = Font(bold=True, color="FFFFFFFF")
NOTE_FILL = PatternFill(fill_type="solid", fgColor="FFFFD966")
NOTE_BODY_FILL = PatternFill(fill_type="solid", fgColor="FFFFF2CC")


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().strip("\ufeff")


def read_rows(data: bytes, sheet_name: str | None = None) -> list[list[str]]:
    """Parse an xlsx payload into rows of stripped strings.

    Reads ``sheet_name`` when given, otherwise the first sheet. Empty cells
    become ``""``; rows keep their original positions.
    """
    try:
        wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        logger.warning(f"Could not open workbook: {e}")
        raise ValidationError(f"Could not read Excel file: {e}") from e

    try:
        if sheet_name is not None:
            if sheet_name not in wb.sheetnames:
                raise ValidationError(f"{sheet_name} not found in Excel file")
            ws = wb[sheet_name]
        else:
            if not wb.sheetnames:
                raise ValidationError("No sheet found in Excel file")
            ws = wb[wb.sheetnames[0]]
        return [[_cell_to_str(c) for c in row] for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def cell(row: list[str], index: int) -> str:
    return row[index] if index < len(row) else ""


@dataclass
class SheetModel:
    title: str
    header: list[Any]
    rows: list[list[Any]] = field(default_factory=list)
    total_row: list[Any] | None = None
    column_widths: dict[int, float] = field(default_factory=dict)
    wrap_text: bool = False
    notes: dict[str, str] = field(default_factory=dict)  # cell ref -> text; first one is the title


def write_workbook(sheets: list[SheetModel]) -> bytes:
    wb = Workbook()
    wb.remove(wb.active)

    for model in sheets:
        ws = wb.create_sheet(title=model.title)
        ws.append(model.header)
        for c in ws[1]:
            c.font = HEADER_FONT
            c.fill = HEADER_FILL
            c.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

        for values in model.rows:
            ws.append(values)
            for c in ws[ws.max_row]:
                if model.wrap_text:
                    c.alignment = Alignment(vertical="top", wrap_text=True)
                elif c.column > 1:
                    c.alignment = Alignment(horizontal="center", vertical="center")

        if model.total_row is not None:
            ws.append(model.total_row)
            for c in ws[ws.max_row]:
                c.font = Font(bold=True)
                if c.column > 1:
                    c.alignment = Alignment(horizontal="center", vertical="center")

        for index, width in model.column_widths.items():
            ws.column_dimensions[get_column_letter(index)].width = width

        for position, (ref, note) in enumerate(model.notes.items()):
            ws[ref] = note
            if position == 0:
                ws[ref].font = Font(bold=True, size=12)
                ws[ref].fill = NOTE_FILL
            else:
                ws[ref].fill = NOTE_BODY_FILL

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
