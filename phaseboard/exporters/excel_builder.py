# phaseboard/exporters/excel_builder.py

from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from phaseboard.core.models import UNASSIGNED_GROUP, group_name_or_unassigned


def _autosize_columns(ws) -> None:
    for col in ws.columns:
        max_length = 0
        column = col[0].column_letter
        for cell in col:
            if cell.value is None:
                continue
            max_length = max(max_length, len(str(cell.value)))
        ws.column_dimensions[column].width = min(max_length + 2, 60)


def _apply_table_header(ws, headers: Sequence[str]) -> Border:
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )
    ws.append(list(headers))
    for col, _ in enumerate(headers, 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_alignment
        cell.border = thin_border
    ws.freeze_panes = "A2"
    return thin_border


def _add_groups_sheet(wb: Workbook, rows: List[Dict[str, Any]]) -> None:
    counts: Dict[str, int] = {}
    for row in rows:
        name = group_name_or_unassigned(row.get("top_group_node"))
        counts[name] = counts.get(name, 0) + 1
    if not counts:
        return
    ws = wb.create_sheet("Groups")
    thin_border = _apply_table_header(ws, ["Group", "Assets"])
    ordered = sorted(counts, key=lambda name: (name == UNASSIGNED_GROUP, name.lower(), name))
    for row_idx, name in enumerate(ordered, 2):
        ws.cell(row=row_idx, column=1, value=name).border = thin_border
        ws.cell(row=row_idx, column=2, value=counts[name]).border = thin_border
    _autosize_columns(ws)


def build_xlsx_from_pivot(columns: Sequence[str], rows: List[Dict[str, Any]], project: str) -> bytes:
    """Renders pivot rows as a formatted .xlsx with a per-group summary sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Pivot"

    thin_border = _apply_table_header(ws, columns)
    for row_idx, row in enumerate(rows, 2):
        for col_idx, column in enumerate(columns, 1):
            value = row.get(column)
            ws.cell(row=row_idx, column=col_idx, value="" if value is None else value).border = thin_border

    _autosize_columns(ws)
    _add_groups_sheet(wb, rows)
    wb.properties.title = f"{project} asset review pivot"

    bio = BytesIO()
    wb.save(bio)
    bio.seek(0)
    return bio.read()
