"""Pytest configuration and fixtures."""

import logging
import textwrap
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def cleanup_loggers():
    """Clean up markbook run loggers after each test to prevent name collisions."""
    yield

    loggers_to_remove = [
        name
        for name in logging.Logger.manager.loggerDict.keys()
        if name.startswith("markbook_")
    ]

    for name in loggers_to_remove:
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
        del logging.Logger.manager.loggerDict[name]


SAMPLE_GRADEBOOK = """\
school: Test School
classes:
  - id: sci-7
    name: Science 7
    subject: Science
    teacher: Ms. Okafor
    students:
      s1: Ada Lovelace
      s2: Alan Turing
    assessments:
      - id: labs
        name: Labs
        is_parent: true
        weight: 40
      - id: lab-1
        parent_id: labs
        weight: 50
        max_score: 10
      - id: lab-2
        parent_id: labs
        weight: 50
        max_score: 20
      - id: test
        name: Unit Test
        weight: 60
        max_score: 50
    scores:
      - {student_id: s1, assessment_id: lab-1, score: 8}
      - {student_id: s1, assessment_id: lab-2, score: 15}
      - {student_id: s1, assessment_id: test, score: 45}
      - {student_id: s2, assessment_id: lab-1, is_excluded: true}
      - {student_id: s2, assessment_id: lab-2, score: 20}
      - {student_id: s2, assessment_id: test, is_excluded: true}
  - id: hist-7
    name: History 7
    subject: History
    students:
      s1: Ada Lovelace
      s2: Alan Turing
    assessments:
      - id: essay
        name: Essay
        weight: 100
    scores:
      - {student_id: s1, assessment_id: essay, score: 70}
"""


@pytest.fixture()
def tmp_yaml(tmp_path):
    """Helper that writes YAML content to a temp file and returns its path."""

    def _write(content: str, name: str = "gradebook.yaml") -> Path:
        p = tmp_path / name
        p.write_text(textwrap.dedent(content))
        return p

    return _write


@pytest.fixture()
def sample_gradebook_path(tmp_yaml) -> Path:
    """Two classes: sci-7 (s1 = 85.0, s2 = 100.0) and hist-7 (s1 = 70.0, s2 = 0.0)."""
    return tmp_yaml(SAMPLE_GRADEBOOK)
