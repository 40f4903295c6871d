from __future__ import annotations

from pathlib import Path
from typing import Any

from markbook.reporting.report_cards import load_run

HEADER_COLOR = "1F4E78"
# Excel sheet titles are limited to 31 characters and may not contain these
_INVALID_TITLE_CHARS = set("[]:*?/\\")


def _sheet_title(class_id: str, used: set[str]) -> str:
    title = "".join("_" if c in _INVALID_TITLE_CHARS else c for c in class_id)[:31]
    base, n = title, 2
    while title in used:
        suffix = f"~{n}"
        title = base[: 31 - len(suffix)] + suffix
        n += 1
    used.add(title)
    return title


def _class_rows(class_result: dict[str, Any], round_to: int) -> list[list[Any]]:
    rows = []
    for student_id, student in class_result["students"].items():
        breakdown = student["breakdown"]
        row: list[Any] = [student_id, student["name"]]
        for assessment in class_result["assessments"]:
            if assessment["id"] in breakdown["excluded_assessments"]:
                row.append("EXC")
                continue
            detail = breakdown["breakdown"].get(assessment["id"])
            row.append(round(detail["score"], round_to) if detail else None)
        row.append(round(student["grade"], round_to))
        row.append(student["letter"])
        rows.append(row)
    return rows


def write_gradebook_xlsx(run_dir: Path) -> Path:
    """Write gradebook.xlsx with one sheet per class, return path."""
    import openpyxl
    from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
    from openpyxl.utils import get_column_letter

    results, meta = load_run(run_dir)
    round_to = meta.get("round_to", 1)

    wb = openpyxl.Workbook()
    wb.remove(wb.active)

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(
        start_color=HEADER_COLOR, end_color=HEADER_COLOR, fill_type="solid"
    )
    thin_border = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin"),
    )

    used_titles: set[str] = set()
    for class_id, class_result in results.items():
        ws = wb.create_sheet(_sheet_title(class_id, used_titles))

        headers = ["Student ID", "Student Name"]
        for assessment in class_result["assessments"]:
            headers.append(f"{assessment['name']} ({assessment['weight']:g}%)")
        headers.extend(["Total (%)", "Letter"])

        for col, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center", wrap_text=True)
            cell.border = thin_border

        for row_idx, values in enumerate(_class_rows(class_result, round_to), 2):
            for col, value in enumerate(values, 1):
                cell = ws.cell(row=row_idx, column=col, value=value)
                cell.border = thin_border
                if col > 2:
                    cell.alignment = Alignment(horizontal="center")

        ws.column_dimensions["A"].width = 15
        ws.column_dimensions["B"].width = 25
        for col in range(3, len(headers) + 1):
            ws.column_dimensions[get_column_letter(col)].width = 18
        ws.freeze_panes = "C2"

    if not wb.sheetnames:
        wb.create_sheet("Gradebook")

    xlsx_path = run_dir / "gradebook.xlsx"
    wb.save(xlsx_path)
    return xlsx_path
