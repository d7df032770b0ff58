"""
Shared pytest fixtures.
Every test gets its own in-memory SQLite database.
"""

import pytest

from studybuddy.database import Database, KeyValueStore
from studybuddy.library import StudyLibrary
from studybuddy.schemas import Flashcard, MaterialCreate
from studybuddy.stats import StatsService


@pytest.fixture
def test_db():
    """Provide a clean in-memory Database instance."""
    database = Database("sqlite:///:memory:")
    yield database
    database.engine.dispose()


@pytest.fixture
def store(test_db):
    """Key-value store over the test database."""
    return KeyValueStore(test_db)


@pytest.fixture
def stats_service(store):
    return StatsService(store)


@pytest.fixture
def library(store, stats_service):
    """Study library without a generation service."""
    return StudyLibrary(store, stats=stats_service)


@pytest.fixture
def sample_material(library):
    """A saved material."""
    return library.create_material(
        MaterialCreate(title="Cell Biology", content="Mitochondria produce ATP.")
    )


@pytest.fixture
def sample_cards():
    """Three new flashcards."""
    return [
        Flashcard(id=f"card-1700000000000-{i}", front=f"Question {i}", back=f"Answer {i}")
        for i in range(3)
    ]
