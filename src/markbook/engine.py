"""Weighted grade calculation.

Every surface that shows a student's class grade (dashboard averages, report
cards, progress reports, the gradebook export) goes through this module so the
number is the same everywhere.

Grading rules:

* Only top-level assessments (no ``parent_id``) are graded directly.
* An assessment excluded for the student contributes neither weight nor score.
* Standalone items score ``raw / max_score * 100`` with no upper clamp.
* Parent items score the weighted average of their non-excluded children,
  each child capped at 100% of its own weight.
* When the active weight is below 100 the total is scaled up to a 100-point
  scale. Active weight above 100 is left as is.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from markbook.models import Assessment, ScoreRecord, ScoreRow

FULL_WEIGHT = 100.0


@dataclass(frozen=True)
class ScoreEntry:
    """A student's resolved score on one assessment."""

    raw_score: float = 0.0
    is_excluded: bool = False


_MISSING = ScoreEntry()


@dataclass
class AssessmentContribution:
    """How one top-level assessment feeds the final grade."""

    score: float
    weight: float
    contribution: float
    rescaled_contribution: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class GradeBreakdown:
    """Final grade plus the per-assessment detail behind it.

    ``contribution`` values sum to the unscaled total; multiplying that sum by
    ``scale_factor`` gives ``total``. ``rescaled_contribution`` values sum to
    ``total`` directly.
    """

    total: float
    total_active_weight: float
    scale_factor: float
    breakdown: dict[str, AssessmentContribution] = field(default_factory=dict)
    excluded_assessments: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "total_active_weight": self.total_active_weight,
            "scale_factor": self.scale_factor,
            "breakdown": {k: v.to_dict() for k, v in self.breakdown.items()},
            "excluded_assessments": list(self.excluded_assessments),
        }


def build_score_lookup(scores: Iterable[ScoreRecord]) -> dict[str, ScoreEntry]:
    """Map assessment id to the student's score; null raw scores become 0."""
    lookup: dict[str, ScoreEntry] = {}
    for record in scores:
        raw = record.raw_score if record.raw_score is not None else 0.0
        lookup[record.assessment_id] = ScoreEntry(
            raw_score=raw, is_excluded=record.is_excluded
        )
    return lookup


def standalone_score(assessment: Assessment, entry: ScoreEntry | None) -> float:
    """Percentage for a directly scored assessment. Not clamped at 100."""
    entry = entry or _MISSING
    return entry.raw_score / assessment.effective_max_score * 100


def parent_score(
    parent: Assessment,
    assessments: Iterable[Assessment],
    lookup: dict[str, ScoreEntry],
) -> float:
    """Percentage for a category, aggregated from its non-excluded children."""
    earned_points = 0.0
    max_possible_points = 0.0

    for child in assessments:
        if child.parent_id != parent.id:
            continue
        entry = lookup.get(child.id, _MISSING)
        if entry.is_excluded:
            continue
        # Each child is capped at its own weight.
        percentage = min(entry.raw_score / child.effective_max_score, 1.0)
        earned_points += percentage * child.weight
        max_possible_points += child.weight

    if max_possible_points <= 0:
        return 0.0
    return earned_points / max_possible_points * 100


def _scale_factor(total_active_weight: float) -> float:
    if total_active_weight == 0:
        return 0.0
    if total_active_weight < FULL_WEIGHT:
        return FULL_WEIGHT / total_active_weight
    return 1.0


def grade_breakdown(
    assessments: Iterable[Assessment], scores: Iterable[ScoreRecord]
) -> GradeBreakdown:
    """Compute a student's grade along with each top-level contribution."""
    all_assessments = list(assessments)
    lookup = build_score_lookup(scores)

    total = 0.0
    total_active_weight = 0.0
    breakdown: dict[str, AssessmentContribution] = {}
    excluded: list[str] = []

    for assessment in all_assessments:
        if assessment.parent_id is not None:
            continue

        entry = lookup.get(assessment.id)
        if entry is not None and entry.is_excluded:
            excluded.append(assessment.id)
            continue

        weight = assessment.weight
        total_active_weight += weight

        if assessment.is_parent:
            score_to_use = parent_score(assessment, all_assessments, lookup)
        else:
            score_to_use = standalone_score(assessment, entry)

        contribution = score_to_use * weight / 100
        total += contribution
        breakdown[assessment.id] = AssessmentContribution(
            score=score_to_use, weight=weight, contribution=contribution
        )

    scale = _scale_factor(total_active_weight)
    for item in breakdown.values():
        item.rescaled_contribution = item.contribution * scale

    if total_active_weight == 0:
        final = 0.0
    elif total_active_weight < FULL_WEIGHT:
        final = total / total_active_weight * FULL_WEIGHT
    else:
        final = total

    return GradeBreakdown(
        total=final,
        total_active_weight=total_active_weight,
        scale_factor=scale,
        breakdown=breakdown,
        excluded_assessments=excluded,
    )


def compute_grade(
    assessments: Iterable[Assessment], scores: Iterable[ScoreRecord]
) -> float:
    """Final weighted percentage for one student in one class.

    All ``scores`` must belong to that student; an assessment with no score
    record counts as a raw score of 0.
    """
    return grade_breakdown(assessments, scores).total


def group_rows_by_student(rows: Iterable[ScoreRow]) -> dict[str, list[ScoreRow]]:
    """Partition class-wide score rows by student, in first-seen order."""
    grouped: dict[str, list[ScoreRow]] = {}
    for row in rows:
        grouped.setdefault(row.student_id, []).append(row)
    return grouped


def compute_bulk_grades(
    assessments: Iterable[Assessment],
    rows: Iterable[ScoreRow],
    student_ids: Iterable[str] | None = None,
) -> dict[str, float]:
    """Grade every student who has score rows.

    ``student_ids`` adds students with no rows at all (graded as all zeros).
    """
    all_assessments = list(assessments)
    grouped = group_rows_by_student(rows)
    if student_ids is not None:
        for student_id in student_ids:
            grouped.setdefault(student_id, [])

    return {
        student_id: compute_grade(all_assessments, student_rows)
        for student_id, student_rows in grouped.items()
    }
