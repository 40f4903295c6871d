import json

import pytest
import yaml

import markbook.aggregate as aggregate_module
from markbook.aggregate import DashboardAverager
from markbook.cache import GradeCache
from markbook.config import load_gradebook
from markbook.runner import GradebookRunner, grade_class


@pytest.fixture
def gradebook(sample_gradebook_path):
    return load_gradebook(sample_gradebook_path)


def test_runner_creates_run_directory(tmp_path, gradebook):
    runner = GradebookRunner(config=gradebook, output_dir=tmp_path / "runs")
    run_dir = runner.execute()

    assert run_dir.exists()
    assert run_dir.parent == tmp_path / "runs"
    assert (run_dir / "results.json").exists()
    assert (run_dir / "meta.yaml").exists()
    assert (run_dir / "debug.log").exists()


def test_runner_captures_results(tmp_path, gradebook):
    run_dir = GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    results = json.loads((run_dir / "results.json").read_text())

    assert list(results) == ["sci-7", "hist-7"]

    sci = results["sci-7"]
    assert sci["name"] == "Science 7"
    assert sci["subject"] == "Science"
    assert sci["teacher"] == "Ms. Okafor"
    assert [a["id"] for a in sci["assessments"]] == ["labs", "test"]
    assert sci["assessments"][0]["kind"] == "parent"

    s1 = sci["students"]["s1"]
    assert s1["name"] == "Ada Lovelace"
    assert s1["grade"] == pytest.approx(85.0)
    assert s1["letter"] == "A"
    assert s1["level"] == "Level 4"
    assert s1["breakdown"]["breakdown"]["labs"]["score"] == pytest.approx(77.5)

    s2 = sci["students"]["s2"]
    assert s2["grade"] == pytest.approx(100.0)
    assert s2["breakdown"]["excluded_assessments"] == ["test"]
    assert s2["breakdown"]["total_active_weight"] == 40

    hist = results["hist-7"]
    assert hist["subject"] == "History"
    assert hist["students"]["s1"]["grade"] == pytest.approx(70.0)
    assert hist["students"]["s2"]["grade"] == 0
    assert hist["students"]["s2"]["letter"] == "R"
    assert hist["stats"]["count"] == 2
    assert hist["stats"]["avg"] == pytest.approx(35.0)


def test_runner_writes_meta(tmp_path, gradebook):
    run_dir = GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    meta = yaml.safe_load((run_dir / "meta.yaml").read_text())

    assert meta["run_id"] == run_dir.name
    assert meta["school"] == "Test School"
    assert meta["classes"] == ["sci-7", "hist-7"]
    assert meta["round_to"] == 1
    # (85 + 100 + 70 + 0) / 4
    assert meta["school_average"] == pytest.approx(63.75)
    assert "markbook_version" in meta
    assert "student_filter" not in meta


def test_runner_logs_exclusions(tmp_path, gradebook):
    run_dir = GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    log = (run_dir / "debug.log").read_text()

    assert "Starting grading run for Test School" in log
    assert "sci-7/s2: excluded from test" in log
    assert "Grading run complete" in log


def test_runner_class_filter(tmp_path, gradebook):
    runner = GradebookRunner(config=gradebook, output_dir=tmp_path, class_filter="hist-7")
    run_dir = runner.execute()
    results = json.loads((run_dir / "results.json").read_text())
    assert list(results) == ["hist-7"]


def test_runner_unknown_class_raises(tmp_path, gradebook):
    runner = GradebookRunner(
        config=gradebook, output_dir=tmp_path / "runs", class_filter="nope"
    )
    with pytest.raises(ValueError, match="Unknown class"):
        runner.execute()
    assert not (tmp_path / "runs").exists()


def test_runner_unknown_student_raises(tmp_path, gradebook):
    runner = GradebookRunner(
        config=gradebook, output_dir=tmp_path / "runs", student_filter="s9"
    )
    with pytest.raises(ValueError, match="Unknown student: 's9'"):
        runner.execute()
    assert not (tmp_path / "runs").exists()


def test_runner_student_filter_checks_selected_class(tmp_path, tmp_yaml):
    path = tmp_yaml("""\
        school: S
        classes:
          - id: c1
            students: {s1: One}
            assessments: [{id: a, weight: 100}]
          - id: c2
            students: {s2: Two}
            assessments: [{id: a, weight: 100}]
    """)
    runner = GradebookRunner(
        config=load_gradebook(path),
        output_dir=tmp_path / "runs",
        class_filter="c1",
        student_filter="s2",
    )
    with pytest.raises(ValueError, match="is not in c1"):
        runner.execute()


def test_runner_cache_uses_configured_ttl(tmp_path, tmp_yaml):
    path = tmp_yaml("""\
        school: S
        settings: {cache_ttl_seconds: 42}
        classes:
          - id: c1
            assessments: [{id: a, weight: 100}]
            scores:
              - {student_id: s1, assessment_id: a, score: 80}
    """)
    runner = GradebookRunner(config=load_gradebook(path), output_dir=tmp_path)
    assert runner.averager.cache.ttl_seconds == 42

    runner.execute()
    assert runner.averager.cache.get(("school_average", "S")) == pytest.approx(80.0)


def test_runner_reuses_injected_averager(tmp_path, gradebook, mocker):
    averager = DashboardAverager(GradeCache(ttl_seconds=600))
    spy = mocker.spy(aggregate_module, "gradebook_grades")

    for _ in range(2):
        run_dir = GradebookRunner(
            config=gradebook, output_dir=tmp_path, averager=averager
        ).execute()
        meta = yaml.safe_load((run_dir / "meta.yaml").read_text())
        assert meta["school_average"] == pytest.approx(63.75)

    assert spy.call_count == 1


def test_runner_completes_with_non_finite_csv_scores(tmp_path, tmp_yaml):
    (tmp_path / "c1.csv").write_text(
        "student_id,assessment_id,score,is_excluded\n"
        "s1,a,NaN,false\n"
        "s2,a,inf,false\n"
        "s3,a,90,false\n"
    )
    path = tmp_yaml("""\
        school: S
        classes:
          - id: c1
            assessments: [{id: a, weight: 100}]
            scores_file: c1.csv
    """)
    run_dir = GradebookRunner(
        config=load_gradebook(path), output_dir=tmp_path / "runs"
    ).execute()
    students = json.loads((run_dir / "results.json").read_text())["c1"]["students"]
    assert students["s1"]["grade"] == 0
    assert students["s2"]["grade"] == 0
    assert students["s3"]["grade"] == pytest.approx(90.0)
    assert students["s1"]["letter"] == "R"


def test_runner_student_filter(tmp_path, gradebook):
    runner = GradebookRunner(config=gradebook, output_dir=tmp_path, student_filter="s2")
    run_dir = runner.execute()
    results = json.loads((run_dir / "results.json").read_text())
    meta = yaml.safe_load((run_dir / "meta.yaml").read_text())

    for class_result in results.values():
        assert list(class_result["students"]) == ["s2"]
    assert meta["student_filter"] == "s2"
    # School-wide, not limited to the filtered student
    assert meta["school_average"] == pytest.approx(63.75)


def test_runner_parallel_keeps_gradebook_order(tmp_path, gradebook):
    runner = GradebookRunner(config=gradebook, output_dir=tmp_path, parallel=4)
    run_dir = runner.execute()
    results = json.loads((run_dir / "results.json").read_text())
    assert list(results) == ["sci-7", "hist-7"]


def test_runner_prints_progress(tmp_path, gradebook, capsys):
    GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    out = capsys.readouterr().out
    assert "Grading 2 class(es) with parallelism 1..." in out
    assert "sci-7 (2 students, avg 92.5)" in out


def test_runner_propagates_class_failure(tmp_path, gradebook, mocker):
    mocker.patch("markbook.runner.grade_class", side_effect=RuntimeError("boom"))
    runner = GradebookRunner(config=gradebook, output_dir=tmp_path)
    with pytest.raises(RuntimeError, match="boom"):
        runner.execute()


def test_two_runs_in_one_process(tmp_path, gradebook):
    first = GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    second = GradebookRunner(config=gradebook, output_dir=tmp_path).execute()
    assert first != second


def test_grade_class_with_roster_student_missing_scores(gradebook):
    result = grade_class(gradebook.get_class("hist-7"))
    assert result["students"]["s2"]["breakdown"]["breakdown"]["essay"]["score"] == 0
