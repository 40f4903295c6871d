"""Report cards and gradebook exports built from a run directory."""

from __future__ import annotations

from pathlib import Path

from markbook.reporting.gradebook_xlsx import write_gradebook_xlsx
from markbook.reporting.report_cards import build_report_cards, write_report_cards


def generate_reports(run_dir: Path) -> tuple[Path, Path]:
    """Write report_cards.html and gradebook.xlsx, return both paths."""
    return write_report_cards(run_dir), write_gradebook_xlsx(run_dir)


__all__ = [
    "build_report_cards",
    "generate_reports",
    "write_gradebook_xlsx",
    "write_report_cards",
]
