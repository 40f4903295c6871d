"""Weighted class grade calculation for school gradebooks."""

from markbook.engine import (
    GradeBreakdown,
    compute_bulk_grades,
    compute_grade,
    grade_breakdown,
)
from markbook.models import Assessment, ScoreRecord, ScoreRow

__all__ = [
    "Assessment",
    "GradeBreakdown",
    "ScoreRecord",
    "ScoreRow",
    "compute_bulk_grades",
    "compute_grade",
    "grade_breakdown",
]
