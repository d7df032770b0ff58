"""
Database connection manager, key-value store adapter and the DAOs built on it.

All records are kept as JSON text in a single key-value table:

    sb_materials      ordered list of StudyMaterial
    sb_flashcards     material_id -> list[Flashcard]
    sb_concept_maps   material_id -> ConceptMapNode
    sb_study_plans    material_id -> StudyPlan
    sb_quizzes        material_id -> list[QuizQuestion]
    sb_summaries      material_id -> MaterialSummary
    sb_quiz_results   append-only list of QuizResult
    sb_tasks          ordered list of Task
    sb_stats          UserStats
"""

import json
import logging
from typing import Any, Generic, TypeVar
from urllib.parse import urlparse

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import create_engine, delete, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from studybuddy.errors import CorruptRecord, DuplicateId, PersistenceError
from studybuddy.models import Base, KeyValueModel
from studybuddy.schemas import StudyMaterial, Task

logger = logging.getLogger(__name__)

MATERIALS_KEY = "sb_materials"
FLASHCARDS_KEY = "sb_flashcards"
CONCEPT_MAPS_KEY = "sb_concept_maps"
STUDY_PLANS_KEY = "sb_study_plans"
QUIZZES_KEY = "sb_quizzes"
SUMMARIES_KEY = "sb_summaries"
QUIZ_RESULTS_KEY = "sb_quiz_results"
TASKS_KEY = "sb_tasks"
STATS_KEY = "sb_stats"

T = TypeVar("T")


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str = "sqlite:///studybuddy.db"):
        self.database_url = database_url
        self.engine = self._create_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.create_tables()

    def _create_engine(self, database_url: str) -> Engine:
        """Create the engine, sharing one connection for in-memory SQLite."""
        engine_kwargs: dict[str, Any] = {"echo": False, "future": True}

        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url == "sqlite://":
                # All sessions must see the same in-memory database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_timeout": 30,
                    "pool_recycle": 3600,
                    "pool_pre_ping": True,
                }
            )

        return create_engine(database_url, **engine_kwargs)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def test_connection(self) -> bool:
        """Test the database connection."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                return True
        except SQLAlchemyError:
            return False

    def get_db_info(self) -> dict:
        """Get database information."""
        parsed_url = urlparse(self.database_url)
        return {
            "database_type": parsed_url.scheme,
            "database": parsed_url.path.lstrip("/") or "memory",
            "connection_status": "connected" if self.test_connection() else "disconnected",
        }


class KeyValueStore:
    """Synchronous string-keyed store over the kv_store table."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, key: str) -> str | None:
        """Get the raw value stored under key."""
        with self.db.get_session() as session:
            record = session.get(KeyValueModel, key)
            return record.value if record else None

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        try:
            with self.db.get_session() as session:
                record = session.get(KeyValueModel, key)
                if record:
                    record.value = value
                else:
                    session.add(KeyValueModel(key=key, value=value))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to write key %s: %s", key, e)
            raise PersistenceError(f"Failed to write '{key}': {e!s}") from e

    def delete(self, key: str) -> None:
        """Remove key. No-op if absent."""
        try:
            with self.db.get_session() as session:
                session.execute(delete(KeyValueModel).where(KeyValueModel.key == key))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to delete key %s: %s", key, e)
            raise PersistenceError(f"Failed to delete '{key}': {e!s}") from e

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys, optionally filtered by prefix."""
        with self.db.get_session() as session:
            query = session.query(KeyValueModel.key)
            if prefix:
                query = query.filter(KeyValueModel.key.startswith(prefix))
            return [row.key for row in query.order_by(KeyValueModel.key).all()]

    def clear(self) -> None:
        """Remove every key."""
        try:
            with self.db.get_session() as session:
                session.execute(delete(KeyValueModel))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to clear store: %s", e)
            raise PersistenceError(f"Failed to clear store: {e!s}") from e

    def _parse(self, key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptRecord(key, str(e)) from e

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Get the parsed JSON value under key.

        A malformed record is logged and treated as absent.

        Args:
            key: Store key
            default: Returned when the key is absent or corrupt

        Returns:
            Parsed JSON value or default
        """
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return self._parse(key, raw)
        except CorruptRecord as e:
            logger.warning("%s; treating as empty", e)
            return default

    def set_json(self, key: str, value: Any) -> None:
        """Serialize value as JSON and store it under key."""
        self.set(key, json.dumps(value, ensure_ascii=False))


def _validate(adapter: TypeAdapter, key: str, data: Any) -> Any:
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        raise CorruptRecord(key, str(e)) from e


class MaterialDAO:
    """Data Access Object for StudyMaterial records."""

    _adapter = TypeAdapter(list[StudyMaterial])

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load(self) -> list[StudyMaterial]:
        data = self.store.get_json(MATERIALS_KEY, [])
        try:
            return _validate(self._adapter, MATERIALS_KEY, data)
        except CorruptRecord as e:
            logger.warning("%s; treating as empty", e)
            return []

    def _dump(self, materials: list[StudyMaterial]) -> None:
        self.store.set_json(MATERIALS_KEY, [m.model_dump(mode="json") for m in materials])

    def save(self, material: StudyMaterial) -> StudyMaterial:
        """Append a material. Raises DuplicateId if the id is taken."""
        materials = self._load()
        if any(m.id == material.id for m in materials):
            raise DuplicateId(material.id)
        materials.append(material)
        self._dump(materials)
        return material

    def get_all(self) -> list[StudyMaterial]:
        """Get all materials in insertion order."""
        return self._load()

    def get_by_id(self, material_id: str) -> StudyMaterial | None:
        """Get a material by ID."""
        for material in self._load():
            if material.id == material_id:
                return material
        return None

    def delete(self, material_id: str) -> bool:
        """Delete a material. Derived artifacts are left untouched."""
        materials = self._load()
        remaining = [m for m in materials if m.id != material_id]
        if len(remaining) == len(materials):
            return False
        self._dump(remaining)
        return True


class ArtifactStore(Generic[T]):
    """
    Map of material_id -> one derived artifact, persisted under a single key.

    Writes overwrite the whole entry for a material (last write wins).
    """

    def __init__(self, store: KeyValueStore, key: str, value_type: Any):
        self.store = store
        self.key = key
        self._adapter = TypeAdapter(value_type)

    def _load_raw(self) -> dict[str, Any]:
        data = self.store.get_json(self.key, {})
        if not isinstance(data, dict):
            logger.warning("%s", CorruptRecord(self.key, "expected a JSON object"))
            return {}
        return data

    def save(self, material_id: str, value: T) -> None:
        """Store value for material_id, replacing any previous entry."""
        entries = self._load_raw()
        entries[material_id] = self._adapter.dump_python(value, mode="json")
        self.store.set_json(self.key, entries)

    def get(self, material_id: str) -> T | None:
        """Get the value for material_id, or None if absent or unreadable."""
        entries = self._load_raw()
        if material_id not in entries:
            return None
        try:
            return _validate(self._adapter, self.key, entries[material_id])
        except CorruptRecord as e:
            logger.warning("%s (material %s); treating as absent", e, material_id)
            return None

    def get_all(self) -> dict[str, T]:
        """Get every readable entry."""
        result = {}
        for material_id in self._load_raw():
            value = self.get(material_id)
            if value is not None:
                result[material_id] = value
        return result

    def delete(self, material_id: str) -> bool:
        """Remove the entry for material_id."""
        entries = self._load_raw()
        if material_id not in entries:
            return False
        del entries[material_id]
        self.store.set_json(self.key, entries)
        return True


class TaskDAO:
    """Data Access Object for Task operations."""

    _adapter = TypeAdapter(list[Task])

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load(self) -> list[Task]:
        try:
            return _validate(self._adapter, TASKS_KEY, self.store.get_json(TASKS_KEY, []))
        except CorruptRecord as e:
            logger.warning("%s; treating as empty", e)
            return []

    def _dump(self, tasks: list[Task]) -> None:
        self.store.set_json(TASKS_KEY, [t.model_dump(mode="json") for t in tasks])

    def save(self, task: Task) -> Task:
        """Append a task. Raises DuplicateId if the id is taken."""
        tasks = self._load()
        if any(t.id == task.id for t in tasks):
            raise DuplicateId(task.id)
        tasks.append(task)
        self._dump(tasks)
        return task

    def get_all(self) -> list[Task]:
        """Get all tasks in insertion order."""
        return self._load()

    def update(self, task: Task) -> Task | None:
        """Replace the task with the same id."""
        tasks = self._load()
        for i, existing in enumerate(tasks):
            if existing.id == task.id:
                tasks[i] = task
                self._dump(tasks)
                return task
        return None

    def delete(self, task_id: str) -> bool:
        """Delete a task."""
        tasks = self._load()
        remaining = [t for t in tasks if t.id != task_id]
        if len(remaining) == len(tasks):
            return False
        self._dump(remaining)
        return True


class ConfigDAO:
    """Data Access Object for configuration overrides."""

    prefix = "config:"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def set(self, key: str, value: str) -> None:
        """Set a configuration value."""
        self.store.set(f"{self.prefix}{key}", value)

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get a configuration value."""
        value = self.store.get(f"{self.prefix}{key}")
        return value if value is not None else default

    def get_all(self) -> dict:
        """Get all configuration values."""
        return {
            key[len(self.prefix):]: self.store.get(key)
            for key in self.store.keys(self.prefix)
        }
