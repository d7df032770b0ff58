"""
Exception types raised by the storage, generation and review layers.
"""


class StudyBuddyError(Exception):
    """Base class for all application errors."""


class CorruptRecord(StudyBuddyError):
    """A stored value could not be parsed back into its expected shape."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt record under '{key}': {reason}")


class PersistenceError(StudyBuddyError):
    """A write to the underlying store failed."""


class DuplicateId(StudyBuddyError):
    """A record with the same id already exists."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Duplicate id: {record_id}")


class GenerationFailure(StudyBuddyError):
    """One or more AI generation calls failed or returned unusable output."""

    def __init__(self, message: str, artifacts: list[str] | None = None):
        self.artifacts = artifacts or []
        super().__init__(message)
