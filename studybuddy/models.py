"""
SQLAlchemy ORM models for database tables.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class KeyValueModel(Base):
    """SQLAlchemy model for the kv_store table.

    Every persisted record (materials, artifact maps, stats, tasks, config
    overrides) lives here as UTF-8 JSON text under a string key.
    """

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(), onupdate=lambda: datetime.now()
    )
