"""
Core cache data structures.
"""
import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from .ttl_policies import CacheTTL


class CacheError(Exception):
    """Base class for cache layer errors."""


class SerializationError(CacheError):
    """A stored record could not be turned back into a CacheEntry."""


def fingerprint_payload(data: Any) -> str:
    """
    Short content hash of a payload, stable across key order.

    Payloads canonical JSON cannot encode (mixed-type or tuple dict keys)
    are hashed from their repr instead, so hashing never fails a write.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        canonical = repr(data)
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def validate_ttl(ttl: float) -> float:
    """Reject TTLs that are neither positive nor INFINITE."""
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise ValueError(f"TTL must be a number of seconds, got {ttl!r}")
    if ttl != CacheTTL.INFINITE and ttl <= 0:
        raise ValueError(f"TTL must be positive or CacheTTL.INFINITE, got {ttl}")
    return ttl


@dataclass
class CacheEntry:
    """
    A cached payload with the metadata needed for TTL checks.

    ttl is in seconds; CacheTTL.INFINITE means the entry only goes away
    through explicit invalidation or eviction.
    """
    data: Any
    written_at: float
    ttl: float
    fingerprint: str = field(default="")

    def __post_init__(self):
        if not self.fingerprint:
            self.fingerprint = fingerprint_payload(self.data)

    @classmethod
    def create(cls, data: Any, ttl: float, now: Optional[float] = None) -> "CacheEntry":
        return cls(data=data, written_at=time.time() if now is None else now, ttl=ttl)

    @property
    def is_infinite(self) -> bool:
        return self.ttl == CacheTTL.INFINITE

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the entry was written."""
        return (time.time() if now is None else now) - self.written_at

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Valid while age < ttl; infinite entries are always valid."""
        if self.is_infinite:
            return True
        return self.age(now) < self.ttl

    def is_stale(self, now: Optional[float] = None) -> bool:
        return not self.is_valid(now)


def serialize_entry(entry: CacheEntry) -> str:
    """
    Encode an entry for the durable store.

    Raises TypeError/ValueError if the payload is not JSON-serializable.
    """
    return json.dumps({
        "data": entry.data,
        "timestamp": entry.written_at,
        "ttl": entry.ttl,
        "fingerprint": entry.fingerprint,
    })


def deserialize_entry(raw: str) -> CacheEntry:
    """
    Decode a durable record.

    Raises:
        SerializationError: malformed JSON or missing/invalid fields
    """
    try:
        record = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Invalid cache record: {e}") from e

    if not isinstance(record, dict) or not {"data", "timestamp", "ttl"} <= record.keys():
        raise SerializationError("Cache record is missing data/timestamp/ttl")

    timestamp, ttl = record["timestamp"], record["ttl"]
    for name, value in (("timestamp", timestamp), ("ttl", ttl)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SerializationError(f"Cache record has non-numeric {name}: {value!r}")

    return CacheEntry(
        data=record["data"],
        written_at=float(timestamp),
        ttl=ttl,
        fingerprint=record.get("fingerprint") or "",
    )


@dataclass
class CacheConfig:
    """
    Construction-time settings for a CacheManager.

    coalesce_timeout=None lets waiters block until the in-flight fetch
    settles, however long that takes.
    """
    max_memory_items: int = 100
    persist_to_storage: bool = True
    storage_prefix: str = "silo_cache_"
    default_ttl: float = CacheTTL.MEDIUM
    coalesce_timeout: Optional[float] = None

    def __post_init__(self):
        if self.max_memory_items < 0:
            raise ValueError("max_memory_items cannot be negative")
        validate_ttl(self.default_ttl)

    @classmethod
    def from_settings(cls, settings) -> "CacheConfig":
        """Build a config from the application Settings object."""
        return cls(
            max_memory_items=settings.max_memory_items,
            persist_to_storage=settings.persist_to_storage,
            storage_prefix=settings.storage_prefix,
            default_ttl=settings.default_ttl,
            coalesce_timeout=settings.coalesce_timeout,
        )
