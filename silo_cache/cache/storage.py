"""
Durable key-value stores backing the memory cache.

The cache manager only relies on the DurableStore protocol; values are
opaque strings and every method is allowed to raise.
"""
import threading
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import Column, DateTime, String, Text, create_engine, delete, select
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger("cache.storage")


class DurableStore(Protocol):
    """
    Interface for persistent string key-value stores.

    Implementations:
    - MemoryStore: process-local dict (tests, memory-only setups)
    - SqlStore: SQLAlchemy table, survives restarts
    """

    def get_all_keys(self, prefix: str = "") -> List[str]:
        """List stored keys, optionally only those starting with prefix."""
        ...

    def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        """Read several keys; missing keys map to None."""
        ...

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def multi_remove(self, keys: Iterable[str]) -> None:
        ...


class MemoryStore:
    """Thread-safe dict implementation of DurableStore."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_all_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [k for k in self._data if k.startswith(prefix)]

    def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        with self._lock:
            return [(k, self._data.get(k)) for k in keys]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def multi_remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


Base = declarative_base()


class CacheRecord(Base):
    """
    One serialized cache entry per storage key.
    """
    __tablename__ = "cache_records"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CacheRecord(key='{self.key}')>"


class SqlStore:
    """
    SQLAlchemy-backed DurableStore.

    Any database SQLAlchemy can reach works; the default deployment is a
    SQLite file next to the app.
    """

    def __init__(self, url: str = "sqlite:///./silo_cache.db", echo: bool = False):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args, echo=echo)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Durable cache store ready at: {self.engine.url}")

    def get_all_keys(self, prefix: str = "") -> List[str]:
        stmt = select(CacheRecord.key)
        if prefix:
            stmt = stmt.where(CacheRecord.key.startswith(prefix, autoescape=True))
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        keys = list(keys)
        if not keys:
            return []
        stmt = select(CacheRecord.key, CacheRecord.value).where(CacheRecord.key.in_(keys))
        with self._session_factory() as session:
            found = {row.key: row.value for row in session.execute(stmt)}
        return [(k, found.get(k)) for k in keys]

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            record = session.get(CacheRecord, key)
            return record.value if record else None

    def set(self, key: str, value: str) -> None:
        with self._session_factory() as session:
            session.merge(CacheRecord(key=key, value=value, updated_at=datetime.utcnow()))
            session.commit()

    def remove(self, key: str) -> None:
        self.multi_remove([key])

    def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        with self._session_factory() as session:
            session.execute(delete(CacheRecord).where(CacheRecord.key.in_(keys)))
            session.commit()

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()
