from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any

import yaml
from expandvars import expandvars
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from markbook.models import (
    Assessment,
    ScoreRow,
    assessment_warnings,
    validate_hierarchy,
)

logger = logging.getLogger(__name__)

REQUIRED_CSV_COLUMNS = ("student_id", "assessment_id")


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    round_to: int = Field(default=1, ge=0, le=6)


class ClassConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)
    id: str
    name: str | None = None
    subject: str | None = None
    teacher: str | None = None
    students: dict[str, str] = {}
    assessments: list[Assessment]
    scores: list[ScoreRow] = []
    scores_file: str | None = None

    @field_validator("assessments")
    @classmethod
    def assessments_form_valid_hierarchy(
        cls, v: list[Assessment]
    ) -> list[Assessment]:
        validate_hierarchy(v)
        return v

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def subject_label(self) -> str:
        return self.subject or self.label

    def student_ids(self) -> list[str]:
        """Roster order when a roster is given, otherwise first-seen score order."""
        if self.students:
            return list(self.students)
        seen: dict[str, None] = {}
        for row in self.scores:
            seen.setdefault(row.student_id, None)
        return list(seen)

    def student_name(self, student_id: str) -> str:
        return self.students.get(student_id, student_id)

    def scores_for(self, student_id: str) -> list[ScoreRow]:
        return [row for row in self.scores if row.student_id == student_id]

    def check_score_references(self) -> None:
        """Raise ValueError listing every score row that points nowhere."""
        known_assessments = {a.id for a in self.assessments}
        problems: list[str] = []
        for row in self.scores:
            if row.assessment_id not in known_assessments:
                problems.append(
                    f"  {row.student_id}: unknown assessment '{row.assessment_id}'"
                )
            if self.students and row.student_id not in self.students:
                problems.append(f"  unknown student '{row.student_id}'")
        if problems:
            details = "\n".join(dict.fromkeys(problems))
            raise ValueError(f"Class '{self.id}' has invalid score rows:\n{details}")


class GradebookConfig(BaseModel):
    school: str
    settings: Settings = Settings()
    classes: list[ClassConfig]

    @field_validator("classes")
    @classmethod
    def class_ids_must_be_unique(cls, v: list[ClassConfig]) -> list[ClassConfig]:
        seen: set[str] = set()
        for class_config in v:
            if class_config.id in seen:
                raise ValueError(f"Duplicate class id '{class_config.id}'")
            seen.add(class_config.id)
        return v

    @model_validator(mode="after")
    def classes_must_not_be_empty(self) -> GradebookConfig:
        if not self.classes:
            raise ValueError("classes must not be empty")
        return self

    def get_class(self, class_id: str) -> ClassConfig:
        for class_config in self.classes:
            if class_config.id == class_id:
                return class_config
        available = ", ".join(c.id for c in self.classes)
        raise ValueError(f"Unknown class: {class_id!r}. Available: {available}")


def read_scores_csv(path: Path) -> list[ScoreRow]:
    """Read score rows exported from the score store."""
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        columns = reader.fieldnames or []
        missing = [c for c in REQUIRED_CSV_COLUMNS if c not in columns]
        if missing:
            raise ValueError(
                f"{path}: missing required column(s): {', '.join(missing)}"
            )
        rows = []
        for record in reader:
            rows.append(
                ScoreRow(
                    student_id=record["student_id"],
                    assessment_id=record["assessment_id"],
                    score=record.get("score"),
                    is_excluded=record.get("is_excluded"),
                )
            )
    return rows


def _resolve_scores_files(raw: dict[str, Any]) -> None:
    """Expand ${VAR} references in every scores_file, listing all unset ones."""
    missing: list[str] = []
    for class_raw in raw.get("classes") or []:
        value = class_raw.get("scores_file") if isinstance(class_raw, dict) else None
        if not value:
            continue
        try:
            class_raw["scores_file"] = expandvars(str(value), nounset=True)
        except Exception:
            # Variable is unset and has no default
            missing.append(f"  {class_raw.get('id')}: {value}")
    if missing:
        details = "\n".join(missing)
        raise ValueError(f"scores_file has unset environment variables:\n{details}")


def load_gradebook(path: Path) -> GradebookConfig:
    """Load and validate a gradebook from a YAML file."""
    config_dir = path.parent.resolve()

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    _resolve_scores_files(raw)
    config = GradebookConfig(**raw)

    for class_config in config.classes:
        if class_config.scores_file:
            scores_path = Path(class_config.scores_file)
            # Relative paths are relative to the gradebook file
            if not scores_path.is_absolute():
                scores_path = (config_dir / scores_path).resolve()
            class_config.scores_file = str(scores_path)
            class_config.scores = class_config.scores + read_scores_csv(scores_path)

        class_config.check_score_references()
        for warning in assessment_warnings(class_config.assessments):
            logger.warning(f"Class '{class_config.id}': {warning}")

    return config
