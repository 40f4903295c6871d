from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from markbook.aggregate import (
    GRADE_SCALE,
    achievement_level,
    letter_grade,
    subject_averages,
)


def load_run(run_dir: Path) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return (results, meta) for a run directory."""
    import yaml

    results = json.loads((run_dir / "results.json").read_text(encoding="utf-8"))
    meta: dict[str, Any] = {}
    meta_path = run_dir / "meta.yaml"
    if meta_path.exists():
        meta = yaml.safe_load(meta_path.read_text()) or {}
    return results, meta


def build_report_cards(results: dict[str, Any]) -> list[dict[str, Any]]:
    """One card per student, with class grades averaged per subject."""
    cards: dict[str, dict[str, Any]] = {}
    class_grades: dict[str, list[tuple[str, float]]] = {}

    for class_id, class_result in results.items():
        for student_id, student in class_result["students"].items():
            card = cards.setdefault(
                student_id,
                {"student_id": student_id, "name": student["name"], "classes": []},
            )
            card["classes"].append(
                {
                    "class_id": class_id,
                    "name": class_result["name"],
                    "subject": class_result["subject"],
                    "teacher": class_result.get("teacher"),
                    "grade": student["grade"],
                    "letter": student["letter"],
                }
            )
            class_grades.setdefault(student_id, []).append(
                (class_result["subject"], student["grade"])
            )

    for student_id, card in cards.items():
        averages = subject_averages(class_grades[student_id])
        card["subjects"] = [
            {
                "subject": subject,
                "grade": grade,
                "letter": letter_grade(grade),
                "level": achievement_level(grade),
            }
            for subject, grade in averages.items()
        ]
    return list(cards.values())


def _scale_rows() -> list[dict[str, Any]]:
    rows = []
    upper = 100
    for minimum, letter, level in GRADE_SCALE:
        rows.append(
            {"letter": letter, "range": f"{minimum}-{upper}", "level": f"Level {level}"}
        )
        upper = minimum - 1
    return rows


def write_report_cards(run_dir: Path) -> Path:
    """Render results.json into report_cards.html, return path."""
    from jinja2 import Environment, FileSystemLoader

    results, meta = load_run(run_dir)
    cards = build_report_cards(results)

    tmpl_dir = Path(__file__).parent / "templates"
    env = Environment(loader=FileSystemLoader(str(tmpl_dir)), autoescape=True)
    template = env.get_template("report_cards.html.j2")

    html = template.render(
        cards=cards,
        meta=meta,
        school=meta.get("school", ""),
        round_to=meta.get("round_to", 1),
        scale=_scale_rows(),
    )
    report_path = run_dir / "report_cards.html"
    report_path.write_text(html, encoding="utf-8")
    return report_path
