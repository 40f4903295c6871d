from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Iterable

import numpy as np

from markbook.cache import GradeCache
from markbook.config import GradebookConfig
from markbook.engine import compute_bulk_grades

# (minimum rounded percent, letter, achievement level)
GRADE_SCALE: tuple[tuple[int, str, int], ...] = (
    (90, "A+", 4),
    (85, "A", 4),
    (80, "A-", 4),
    (77, "B+", 3),
    (73, "B", 3),
    (70, "B-", 3),
    (67, "C+", 2),
    (63, "C", 2),
    (60, "C-", 2),
    (57, "D+", 1),
    (53, "D", 1),
    (50, "D-", 1),
)
BELOW_SCALE_LETTER = "R"


@dataclass
class GradeStatistics:
    """Summary of a set of grades."""

    avg: float | None
    min: float | None
    max: float | None
    stddev: float | None
    count: int = 0

    def to_dict(self) -> dict[str, float | int | None]:
        return asdict(self)


def round_percent(value: float) -> int:
    """Round half up to a whole percent, as report cards display it."""
    return int(math.floor(value + 0.5))


def letter_grade(percent: float) -> str:
    rounded = round_percent(percent)
    for minimum, letter, _ in GRADE_SCALE:
        if rounded >= minimum:
            return letter
    return BELOW_SCALE_LETTER


def achievement_level(percent: float) -> str:
    rounded = round_percent(percent)
    for minimum, _, level in GRADE_SCALE:
        if rounded >= minimum:
            return f"Level {level}"
    return "Below Level 1"


def compute_stats(values: Iterable[float | int | None]) -> GradeStatistics:
    """Compute avg, min, max, stddev for a list of grades."""
    nums = [v for v in values if v is not None]
    if not nums:
        return GradeStatistics(avg=None, min=None, max=None, stddev=None, count=0)

    arr = np.array(nums, dtype=float)
    return GradeStatistics(
        avg=round(float(np.mean(arr)), 4),
        min=round(float(np.min(arr)), 4),
        max=round(float(np.max(arr)), 4),
        stddev=round(float(np.std(arr)), 4),
        count=len(nums),
    )


def school_average(grades: Iterable[float]) -> float:
    """Mean of every (student, class) grade; 0 when there are none."""
    arr = np.array(list(grades), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr))


def subject_averages(class_grades: Iterable[tuple[str, float]]) -> dict[str, int]:
    """Average one student's class grades that share a subject label.

    Input is ``(subject, grade)`` pairs; output keeps first-seen subject order
    and rounds each average to a whole percent.
    """
    by_subject: dict[str, list[float]] = {}
    for subject, grade in class_grades:
        by_subject.setdefault(subject, []).append(grade)
    return {
        subject: round_percent(float(np.mean(grades)))
        for subject, grades in by_subject.items()
    }


def gradebook_grades(gradebook: GradebookConfig) -> list[float]:
    """Every (student, class) grade in a gradebook."""
    grades: list[float] = []
    for class_config in gradebook.classes:
        class_grades = compute_bulk_grades(
            class_config.assessments,
            class_config.scores,
            student_ids=class_config.student_ids(),
        )
        grades.extend(class_grades.values())
    return grades


class DashboardAverager:
    """School-wide average grade, held in an injected cache."""

    def __init__(self, cache: GradeCache) -> None:
        self.cache = cache

    def _key(self, school: str) -> tuple[str, str]:
        return ("school_average", school)

    def average(self, gradebook: GradebookConfig) -> float:
        return self.cache.get_or_compute(
            self._key(gradebook.school),
            lambda: school_average(gradebook_grades(gradebook)),
        )

    def refresh(self, school: str) -> bool:
        """Forget the cached average so the next call recomputes it."""
        return self.cache.invalidate(self._key(school))
