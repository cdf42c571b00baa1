"""
Blob Store - key/value persistence for the exporter state document.

============================================================
IMPLEMENTATIONS
============================================================
- InMemoryBlobStore: process-local, for tests and throwaway sessions
- SqlBlobStore: SQLAlchemy ORM table, SQLite by default

Store failures surface as PersistenceError; the trade data store turns
them into logged warnings.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .exceptions import PersistenceError


logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """get(key) -> str | None, set(key, str)."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...


class InMemoryBlobStore(BlobStore):
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


# =============================================================
# SQLALCHEMY BACKEND
# =============================================================

class Base(DeclarativeBase):
    """Declarative base for exporter tables."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class BlobRecord(Base):
    __tablename__ = "exporter_blobs"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Last write timestamp (UTC)",
    )


class SqlBlobStore(BlobStore):
    """
    Blob store backed by a single SQL table.

    Usage:
        store = SqlBlobStore("sqlite:///portfolio_exporter.db")
        store.set("key", "{}")
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        try:
            self._engine = create_engine(database_url, echo=echo)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to initialize blob store: {e}",
                details={"database_url": database_url.split("@")[-1]},
            ) from e
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info(f"Blob store ready at {database_url.split('@')[-1]}")

    def get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                record = session.execute(
                    select(BlobRecord).where(BlobRecord.key == key)
                ).scalar_one_or_none()
                return record.value if record else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read blob {key}: {e}") from e

    def set(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as session:
                self._upsert(session, key, value)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write blob {key}: {e}") from e

    @staticmethod
    def _upsert(session: Session, key: str, value: str) -> None:
        record = session.get(BlobRecord, key)
        now = datetime.now(timezone.utc)
        if record is None:
            session.add(BlobRecord(key=key, value=value, updated_at=now))
        else:
            record.value = value
            record.updated_at = now

    def dispose(self) -> None:
        self._engine.dispose()
