"""Assessment and score models consumed by the grade engine."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Iterable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAX_SCORE = 100.0

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", ""}


class AssessmentKind(str, Enum):
    STANDALONE = "standalone"
    PARENT = "parent"
    CHILD = "child"


class Assessment(BaseModel):
    """One graded item within a class.

    Accepts both the short field names and the column names used by the
    assessment store (``assessment_id``, ``parent_assessment_id``,
    ``weight_points``). ``weight_percent`` is the legacy weight column; it is
    kept for display only and never used for grading.
    """

    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, coerce_numbers_to_str=True
    )

    id: str = Field(validation_alias=AliasChoices("id", "assessment_id"))
    name: str | None = None
    parent_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("parent_id", "parent_assessment_id"),
    )
    is_parent: bool = False
    weight: float = Field(
        default=0.0, ge=0, validation_alias=AliasChoices("weight", "weight_points")
    )
    weight_percent: float | None = None
    max_score: float | None = None

    @field_validator("weight", mode="before")
    @classmethod
    def missing_weight_is_zero(cls, v: Any) -> Any:
        if v is None or v == "":
            return 0.0
        return v

    @field_validator("parent_id", mode="before")
    @classmethod
    def blank_parent_is_none(cls, v: Any) -> Any:
        if v == "":
            return None
        return v

    @property
    def kind(self) -> AssessmentKind:
        if self.parent_id is not None:
            return AssessmentKind.CHILD
        if self.is_parent:
            return AssessmentKind.PARENT
        return AssessmentKind.STANDALONE

    @property
    def effective_max_score(self) -> float:
        """Max score used for grading: 100 when unset or non-positive."""
        if self.max_score is None or self.max_score <= 0:
            return DEFAULT_MAX_SCORE
        return self.max_score

    @property
    def label(self) -> str:
        return self.name or self.id


def _parse_score(v: Any) -> float | None:
    if v is None:
        return None
    if isinstance(v, (bool, int, float)):
        value = float(v)
    else:
        text = str(v).strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    # nan and inf are not scores
    if not math.isfinite(value):
        return None
    return value


def _parse_flag(v: Any) -> bool:
    if v is None:
        return False
    if isinstance(v, str):
        text = v.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot interpret {v!r} as a boolean")
    return bool(v)


class ScoreRecord(BaseModel):
    """One student's result on one assessment.

    ``raw_score`` is ``None`` when nothing has been submitted yet. Values that
    cannot be read as a number are treated the same way.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    assessment_id: str
    student_id: str | None = None
    raw_score: float | None = Field(
        default=None, validation_alias=AliasChoices("raw_score", "score")
    )
    is_excluded: bool = False

    @field_validator("raw_score", mode="before")
    @classmethod
    def parse_raw_score(cls, v: Any) -> float | None:
        return _parse_score(v)

    @field_validator("is_excluded", mode="before")
    @classmethod
    def parse_is_excluded(cls, v: Any) -> bool:
        return _parse_flag(v)


class ScoreRow(ScoreRecord):
    """A score record that names its student, as read from a class-wide query."""

    student_id: str


def hierarchy_problems(assessments: Iterable[Assessment]) -> list[str]:
    """Return every structural problem in a class's assessment list."""
    items = list(assessments)
    problems: list[str] = []

    by_id: dict[str, Assessment] = {}
    for a in items:
        if a.id in by_id:
            problems.append(f"duplicate assessment id '{a.id}'")
        by_id[a.id] = a

    for a in items:
        if a.parent_id is None:
            continue
        if a.is_parent:
            problems.append(
                f"assessment '{a.id}' is a parent but also has parent '{a.parent_id}'"
            )
        if a.parent_id == a.id:
            problems.append(f"assessment '{a.id}' is its own parent")
            continue
        parent = by_id.get(a.parent_id)
        if parent is None:
            problems.append(
                f"assessment '{a.id}' references unknown parent '{a.parent_id}'"
            )
        elif not parent.is_parent:
            problems.append(
                f"assessment '{a.id}' references '{a.parent_id}', which is not a parent"
            )
    return problems


def validate_hierarchy(assessments: Iterable[Assessment]) -> None:
    """Raise ValueError listing every hierarchy problem found."""
    problems = hierarchy_problems(assessments)
    if problems:
        details = "\n".join(f"  {p}" for p in problems)
        raise ValueError(f"Invalid assessment hierarchy:\n{details}")


def assessment_warnings(assessments: Iterable[Assessment]) -> list[str]:
    """Data-entry issues the engine silently tolerates."""
    items = list(assessments)
    warnings: list[str] = []
    for a in items:
        if a.max_score is not None and a.max_score <= 0:
            warnings.append(
                f"assessment '{a.id}' has max_score {a.max_score:g}; graded out of 100"
            )
    top_level_weight = sum(a.weight for a in items if a.parent_id is None)
    if items and top_level_weight != 100:
        warnings.append(
            f"top-level weights sum to {top_level_weight:g}, not 100"
        )
    return warnings
