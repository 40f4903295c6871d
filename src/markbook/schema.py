"""Generate JSON Schema and docs for the gradebook YAML format."""

from __future__ import annotations

import json
from pathlib import Path

from markbook.config import GradebookConfig


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _collect_refs(obj: object) -> set[str]:
    """Return all ``$defs`` names referenced via ``$ref`` inside *obj*."""
    refs: set[str] = set()
    if isinstance(obj, dict):
        if "$ref" in obj:
            ref = obj["$ref"]
            if ref.startswith("#/$defs/"):
                refs.add(ref.removeprefix("#/$defs/"))
        for v in obj.values():
            refs |= _collect_refs(v)
    elif isinstance(obj, list):
        for v in obj:
            refs |= _collect_refs(v)
    return refs


def _order_defs(defs: dict) -> dict:
    """Topologically sort ``$defs`` so referenced types precede referencing types."""
    ordered: dict[str, dict] = {}
    visited: set[str] = set()

    def _visit(name: str) -> None:
        if name in visited or name not in defs:
            return
        visited.add(name)
        for dep in _collect_refs(defs[name]):
            _visit(dep)
        ordered[name] = defs[name]

    for name in defs:
        _visit(name)
    return ordered


def generate_json_schema() -> dict:
    schema = GradebookConfig.model_json_schema()
    if "$defs" in schema:
        schema["$defs"] = _order_defs(schema["$defs"])
    return schema


def write_json_schema(path: Path) -> None:
    _ensure_parent(path)
    schema = generate_json_schema()
    path.write_text(json.dumps(schema, indent=2) + "\n")


def _field_lines(model_def: dict) -> list[str]:
    required = set(model_def.get("required", []))
    lines = []
    for name in model_def.get("properties", {}):
        marker = "required" if name in required else "optional"
        lines.append(f"- `{name}` ({marker})")
    return lines


def generate_schema_doc() -> str:
    schema = generate_json_schema()
    defs = schema.get("$defs", {})

    lines: list[str] = []
    lines.append("# markbook gradebook YAML schema")
    lines.append("")
    lines.append("This doc is generated from the Pydantic models.")
    lines.append("")
    lines.append("## Top-level keys")
    lines.extend(_field_lines(schema))
    for title, model_name in (
        ("Settings", "Settings"),
        ("Class", "ClassConfig"),
        ("Assessment", "Assessment"),
        ("Score row", "ScoreRow"),
    ):
        model_def = defs.get(model_name)
        if not model_def:
            continue
        lines.append("")
        lines.append(f"## {title}")
        lines.extend(_field_lines(model_def))

    lines.append("")
    lines.append("## Score CSV files")
    lines.append(
        "`scores_file` points at a CSV with columns "
        "`student_id, assessment_id, score, is_excluded`. "
        "`${VAR}` and `${VAR:-default}` are expanded; relative paths are "
        "resolved against the gradebook file."
    )
    lines.append("")
    return "\n".join(lines)


def write_schema_doc(path: Path) -> None:
    _ensure_parent(path)
    path.write_text(generate_schema_doc())
