"""Shared fixtures.

Every test gets its own SQLite file, storage root and fresh singletons
(config cache, change feed, bucket store, function registry).
"""

from unittest.mock import MagicMock

import pytest

from classroom.backend.functions import reset_function_registry
from classroom.backend.realtime import reset_change_feed
from classroom.backend.storage import reset_bucket_store
from classroom.config.app_config import clear_config_cache
from classroom.db import gradebook_repository as repo
from classroom.db.database import init_db


def _reset_singletons() -> None:
    clear_config_cache()
    reset_change_feed()
    reset_bucket_store()
    reset_function_registry()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point the data directory and database at tmp_path."""
    data_dir = tmp_path / "data"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CLASSROOM_DATA_DIR", str(data_dir))
    _reset_singletons()
    init_db(data_dir / "classroom.db")
    yield data_dir
    _reset_singletons()


@pytest.fixture
def base_class():
    """Organisation base class with no lessons."""
    return repo.create_base_class("org-1", "Biology 101", "Intro to biology", base_class_id="bc-1")


@pytest.fixture
def gradebook_class(base_class):
    """Class instance with three students and two assignments.

    Grades:
        Ana  (s-ana):  hw 18/20, quiz 45/50   -> 90.0
        Luis (s-luis): hw 12/20, quiz missing -> 60.0
        Zoe  (s-zoe):  nothing graded         -> N/A
    """
    from classroom.core.models import Grade

    instance = repo.create_class_instance(
        base_class["id"], "Biology 101 - Fall", enrollment_code="BIO-F", instance_id="ci-1"
    )
    for user_id, first, last in [
        ("s-ana", "Ana", "Alvarez"),
        ("s-luis", "Luis", "Baker"),
        ("s-zoe", "Zoe", "Carter"),
    ]:
        repo.add_profile(user_id, first, last, f"{first.lower()}@school.test")
        repo.enroll_student(instance["id"], user_id)

    homework = repo.create_assignment(
        instance["id"], "Homework 1", points_possible=20, type="homework", assignment_id="a-hw"
    )
    quiz = repo.create_assignment(
        instance["id"], "Quiz 1", points_possible=50, type="quiz", assignment_id="a-quiz"
    )

    repo.upsert_grade(Grade("s-ana", homework.id, instance["id"], points_earned=18, percentage=90))
    repo.upsert_grade(Grade("s-ana", quiz.id, instance["id"], points_earned=45, percentage=90))
    repo.upsert_grade(Grade("s-luis", homework.id, instance["id"], points_earned=12, percentage=60))
    repo.upsert_grade(Grade("s-luis", quiz.id, instance["id"], status="missing"))

    return instance


@pytest.fixture
def mock_llm_client():
    """Mock LLM client that returns fixed responses without calling a real LLM."""
    client = MagicMock()
    client.config = MagicMock()
    client.config.provider = "lmstudio"
    client.config.model = "test-model"
    client.is_available.return_value = True
    client.simple_json.return_value = {
        "sections": [
            {"title": "Introduction", "content": "Cells are the basic unit of life."},
            {"title": "Summary", "content": "All living things are made of cells."},
        ]
    }
    client.transcribe.return_value = "Transcribed lecture about mitosis."
    return client
