from __future__ import annotations

from pathlib import Path

import typer

app = typer.Typer(name="markbook", help="Compute weighted class grades")
schema_app = typer.Typer(name="schema", help="Generate schema tooling")
app.add_typer(schema_app, name="schema")


def _load(config: str):
    from markbook.config import load_gradebook

    config_path = Path(config)
    if not config_path.exists():
        typer.echo(f"Error: gradebook file not found: {config}", err=True)
        raise typer.Exit(1)
    try:
        return load_gradebook(config_path)
    except (ValueError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def grade(
    config: str = typer.Argument(help="Path to gradebook YAML"),
    class_id: str | None = typer.Option(
        None, "--class", help="Grade only this class"
    ),
    student: str | None = typer.Option(None, help="Grade only this student"),
    output_dir: str = typer.Option("runs", help="Output directory for run results"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output to terminal"
    ),
    parallel: int = typer.Option(
        1, "--parallel", "-p", min=1, max=100, help="Number of classes graded at once"
    ),
    no_open: bool = typer.Option(
        False, "--no-open", help="Do not open report_cards.html in browser after run"
    ),
):
    """Grade every student in the gradebook and write reports."""
    from markbook.reporting import generate_reports
    from markbook.runner import GradebookRunner

    gradebook = _load(config)

    runner = GradebookRunner(
        config=gradebook,
        output_dir=Path(output_dir),
        class_filter=class_id,
        student_filter=student,
        verbose=verbose,
        parallel=parallel,
    )

    try:
        run_dir = runner.execute()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo("Generating reports...")
    report_path, xlsx_path = generate_reports(run_dir)

    typer.echo(f"Run complete: {run_dir}")
    typer.echo(f"Report cards: {report_path}")
    typer.echo(f"Gradebook: {xlsx_path}")
    if not verbose:
        typer.echo(f"Debug log: {run_dir / 'debug.log'}")

    if not no_open:
        import webbrowser

        webbrowser.open(report_path.resolve().as_uri())


@app.command()
def breakdown(
    config: str = typer.Argument(help="Path to gradebook YAML"),
    class_id: str = typer.Option(..., "--class", help="Class to grade"),
    student: str = typer.Option(..., help="Student to grade"),
):
    """Show how each assessment feeds one student's grade."""
    from markbook.aggregate import letter_grade
    from markbook.engine import grade_breakdown

    gradebook = _load(config)
    try:
        class_config = gradebook.get_class(class_id)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if student not in class_config.student_ids():
        typer.echo(
            f"Error: student '{student}' is not in class '{class_id}'", err=True
        )
        raise typer.Exit(1)

    result = grade_breakdown(
        class_config.assessments, class_config.scores_for(student)
    )
    labels = {a.id: a for a in class_config.assessments}

    typer.echo(
        f"{class_config.label} / {class_config.student_name(student)} ({student})"
    )
    for assessment_id, item in result.breakdown.items():
        assessment = labels[assessment_id]
        typer.echo(
            f"  {assessment.label:<24} {assessment.kind.value:<10} "
            f"weight {item.weight:>6g}  score {item.score:>7.2f}  "
            f"contribution {item.rescaled_contribution:>6.2f}"
        )
    if result.excluded_assessments:
        typer.echo(f"  excluded: {', '.join(result.excluded_assessments)}")
    typer.echo(
        f"Active weight: {result.total_active_weight:g} (scale x{result.scale_factor:.2f})"
    )
    rounded = round(result.total, gradebook.settings.round_to)
    typer.echo(f"Final grade: {rounded}% ({letter_grade(result.total)})")


@app.command()
def report(
    run_dir: str = typer.Argument(help="Path to run output directory"),
    open_report: bool = typer.Option(
        False, "--open", help="Open report_cards.html in browser after generating"
    ),
):
    """Regenerate report cards and the gradebook export from a previous run."""
    from markbook.reporting import generate_reports

    run_path = Path(run_dir)
    if not run_path.exists() or not (run_path / "results.json").exists():
        typer.echo(f"Error: not a valid run directory: {run_dir}", err=True)
        raise typer.Exit(1)

    report_path, xlsx_path = generate_reports(run_path)
    typer.echo(f"Report cards generated: {report_path}")
    typer.echo(f"Gradebook generated: {xlsx_path}")

    if open_report:
        import webbrowser

        webbrowser.open(report_path.resolve().as_uri())


EXAMPLE_GRADEBOOK = """\
school: Example School

settings:
  cache_ttl_seconds: 300
  round_to: 1

classes:
  - id: math-7
    name: Math 7
    subject: Mathematics
    students:
      s1: Ada Lovelace
      s2: Alan Turing
    assessments:
      - id: quizzes
        is_parent: true
        weight: 40
      - id: quiz-1
        parent_id: quizzes
        weight: 50
        max_score: 20
      - id: quiz-2
        parent_id: quizzes
        weight: 50
        max_score: 20
      - id: final
        weight: 60
        max_score: 100
    scores:
      - {student_id: s1, assessment_id: quiz-1, score: 18}
      - {student_id: s1, assessment_id: quiz-2, score: 16}
      - {student_id: s1, assessment_id: final, score: 88}
      - {student_id: s2, assessment_id: quiz-1, score: 12}
      - {student_id: s2, assessment_id: quiz-2, is_excluded: true}
      - {student_id: s2, assessment_id: final, score: 74}
"""


@app.command()
def init(
    dir: str = typer.Option(
        "markbook", "--dir", help="Directory to initialize a gradebook in"
    ),
):
    """Initialize a new gradebook directory with an example file."""
    project_dir = Path(dir)
    if not project_dir.exists():
        project_dir.mkdir(parents=True, exist_ok=True)

    example = project_dir / "gradebook.yaml"
    if example.exists():
        typer.echo(f"gradebook.yaml already exists in {dir}, skipping.")
        return

    example.write_text(EXAMPLE_GRADEBOOK)
    typer.echo(f"Initialized gradebook in {dir}:")
    typer.echo("  gradebook.yaml   - example gradebook")


@schema_app.command("generate")
def schema_generate(
    dir: str = typer.Option(
        "markbook", "--dir", help="Project directory for default schema/doc outputs"
    ),
    out: str | None = typer.Option(
        None,
        help="Output path for JSON Schema (defaults to <dir>/schemas/markbook.schema.json)",
    ),
    doc: str | None = typer.Option(
        None, help="Output path for schema docs (defaults to <dir>/docs/schema.md)"
    ),
):
    """Generate JSON Schema and docs for the gradebook YAML format."""
    from markbook.schema import write_json_schema, write_schema_doc

    project_dir = Path(dir)
    out_path = (
        Path(out)
        if out is not None
        else project_dir / "schemas" / "markbook.schema.json"
    )
    doc_path = Path(doc) if doc is not None else project_dir / "docs" / "schema.md"
    write_json_schema(out_path)
    write_schema_doc(doc_path)
    typer.echo(f"Wrote schema: {out_path}")
    typer.echo(f"Wrote docs: {doc_path}")
