from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from markbook.aggregate import (
    DashboardAverager,
    achievement_level,
    compute_stats,
    letter_grade,
)
from markbook.cache import GradeCache
from markbook.config import ClassConfig, GradebookConfig
from markbook.engine import grade_breakdown, group_rows_by_student
from markbook.verbose import setup_logger

ClassId = str


def grade_class(
    class_config: ClassConfig, student_filter: str | None = None
) -> dict[str, Any]:
    """Grade every student in one class and collect the per-student detail."""
    student_ids = class_config.student_ids()
    if student_filter:
        student_ids = [s for s in student_ids if s == student_filter]

    rows_by_student = group_rows_by_student(class_config.scores)

    students: dict[str, dict[str, Any]] = {}
    for student_id in student_ids:
        result = grade_breakdown(
            class_config.assessments, rows_by_student.get(student_id, [])
        )
        students[student_id] = {
            "name": class_config.student_name(student_id),
            "grade": result.total,
            "letter": letter_grade(result.total),
            "level": achievement_level(result.total),
            "breakdown": result.to_dict(),
        }

    top_level = [a for a in class_config.assessments if a.parent_id is None]
    stats = compute_stats([s["grade"] for s in students.values()])

    return {
        "name": class_config.label,
        "subject": class_config.subject_label,
        "teacher": class_config.teacher,
        "assessments": [
            {
                "id": a.id,
                "name": a.label,
                "weight": a.weight,
                "kind": a.kind.value,
            }
            for a in top_level
        ],
        "students": students,
        "stats": stats.to_dict(),
    }


class GradebookRunner:
    """Grades a gradebook and writes the results to a run directory."""

    def __init__(
        self,
        config: GradebookConfig,
        output_dir: Path,
        class_filter: str | None = None,
        student_filter: str | None = None,
        verbose: bool = False,
        parallel: int = 1,
        averager: DashboardAverager | None = None,
    ):
        self.config = config
        self.output_dir = output_dir
        self.class_filter = class_filter
        self.student_filter = student_filter
        self.verbose = verbose
        self.parallel = parallel
        if averager is None:
            averager = DashboardAverager(
                GradeCache(ttl_seconds=config.settings.cache_ttl_seconds)
            )
        self.averager = averager

    def _select_classes(self) -> list[ClassConfig]:
        classes = self.config.classes
        if self.class_filter:
            classes = [self.config.get_class(self.class_filter)]
        if self.student_filter and not any(
            self.student_filter in c.student_ids() for c in classes
        ):
            class_ids = ", ".join(c.id for c in classes)
            raise ValueError(
                f"Unknown student: {self.student_filter!r} is not in {class_ids}"
            )
        return classes

    def execute(self) -> Path:
        """Grade all selected classes. Returns the run directory."""
        classes = self._select_classes()

        run_id = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S_%f")
        run_dir = self.output_dir / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        logger = setup_logger(
            run_dir / "debug.log",
            verbose=self.verbose,
            logger_name=f"markbook_run_{run_id}",
        )
        logger.debug(f"Starting grading run for {self.config.school}")

        print(f"Grading {len(classes)} class(es) with parallelism {self.parallel}...")

        all_results: dict[ClassId, dict[str, Any]] = {}
        with ThreadPoolExecutor(max_workers=self.parallel) as executor:
            future_to_class = {
                executor.submit(
                    self._grade_class, class_config=class_config, logger=logger
                ): class_config.id
                for class_config in classes
            }

            completed_count = 0
            for future in as_completed(future_to_class):
                class_id = future_to_class[future]
                completed_count += 1
                try:
                    result = future.result()
                except Exception as e:
                    print(
                        f"  [{completed_count}/{len(future_to_class)}] ERROR  {class_id}: {e}"
                    )
                    logger.error(f"Class '{class_id}' failed: {e}")
                    raise
                all_results[class_id] = result
                avg = result["stats"]["avg"]
                avg_text = f", avg {avg:.1f}" if avg is not None else ""
                print(
                    f"  [{completed_count}/{len(future_to_class)}] {class_id} "
                    f"({len(result['students'])} students{avg_text})"
                )

        # Keep gradebook order regardless of completion order
        ordered = {c.id: all_results[c.id] for c in classes if c.id in all_results}
        self._write_results(run_dir, ordered)
        logger.debug("Grading run complete")
        return run_dir

    def _grade_class(
        self, class_config: ClassConfig, logger: logging.Logger
    ) -> dict[str, Any]:
        logger.debug(
            f"Grading class '{class_config.id}': {len(class_config.assessments)} assessments, "
            f"{len(class_config.scores)} score rows"
        )
        result = grade_class(class_config, student_filter=self.student_filter)
        for student_id, student in result["students"].items():
            excluded = student["breakdown"]["excluded_assessments"]
            if excluded:
                logger.debug(
                    f"{class_config.id}/{student_id}: excluded from {', '.join(excluded)}"
                )
        logger.debug(
            f"Class '{class_config.id}' graded: {len(result['students'])} students"
        )
        return result

    def _write_results(self, run_dir: Path, all_results: dict[str, Any]) -> None:
        """Write results.json and meta.yaml to the run directory."""
        (run_dir / "results.json").write_text(json.dumps(all_results, indent=2))

        try:
            import importlib.metadata

            markbook_version = importlib.metadata.version("markbook")
        except Exception:
            markbook_version = "unknown"

        # School-wide, regardless of class or student filters
        average = self.averager.average(self.config)

        meta: dict[str, Any] = {
            "run_id": run_dir.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "school": self.config.school,
            "classes": list(all_results.keys()),
            "markbook_version": markbook_version,
            "round_to": self.config.settings.round_to,
            "school_average": round(average, 4),
        }
        if self.student_filter:
            meta["student_filter"] = self.student_filter

        (run_dir / "meta.yaml").write_text(yaml.dump(meta, default_flow_style=False))
