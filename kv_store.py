import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, Protocol, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from database import SessionFactory, session_scope
from models import KeyValueEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of a best-effort store call. Callers decide whether a failure matters."""

    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "StoreResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "StoreResult[T]":
        return cls(ok=False, error=error)


class KeyValueStore(Protocol):
    def get(self, key: str) -> StoreResult[str]: ...

    def set(
        self, key: str, value: str, *, expires_at: Optional[datetime] = None
    ) -> StoreResult[None]: ...

    def delete(self, key: str) -> StoreResult[None]: ...

    def delete_expired(self, prefix: str, before: datetime) -> StoreResult[int]: ...


class SqlKeyValueStore:
    """Key-value store on the ``kv_store`` table, one short session per call."""

    def __init__(self, session_factory: Optional[SessionFactory] = None) -> None:
        self.session_factory = session_factory

    def get(self, key: str) -> StoreResult[str]:
        try:
            with session_scope(self.session_factory) as session:
                value = session.scalar(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
        except SQLAlchemyError as exc:
            logger.warning(f"kv_get_failed: key={key} error={exc}")
            return StoreResult.failure(exc)
        return StoreResult.success(value)

    def set(
        self, key: str, value: str, *, expires_at: Optional[datetime] = None
    ) -> StoreResult[None]:
        try:
            with session_scope(self.session_factory) as session:
                entry = session.scalar(
                    select(KeyValueEntry).where(KeyValueEntry.key == key)
                )
                if entry is None:
                    entry = KeyValueEntry(key=key, value=value, expires_at=expires_at)
                    session.add(entry)
                else:
                    entry.value = value
                    entry.expires_at = expires_at
        except SQLAlchemyError as exc:
            logger.warning(f"kv_set_failed: key={key} error={exc}")
            return StoreResult.failure(exc)
        return StoreResult.success()

    def delete(self, key: str) -> StoreResult[None]:
        try:
            with session_scope(self.session_factory) as session:
                session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
        except SQLAlchemyError as exc:
            logger.warning(f"kv_delete_failed: key={key} error={exc}")
            return StoreResult.failure(exc)
        return StoreResult.success()

    def delete_expired(self, prefix: str, before: datetime) -> StoreResult[int]:
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(
                    delete(KeyValueEntry).where(
                        KeyValueEntry.key.startswith(prefix),
                        KeyValueEntry.expires_at.is_not(None),
                        KeyValueEntry.expires_at < before,
                    )
                )
                removed = int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.warning(f"kv_prune_failed: prefix={prefix} error={exc}")
            return StoreResult.failure(exc)
        return StoreResult.success(removed)
