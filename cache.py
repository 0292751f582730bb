import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from kv_store import KeyValueStore
from schemas import DailyDigest

logger = logging.getLogger(__name__)

DIGEST_KEY_PREFIX = "digest:"
DEFAULT_DIGEST_TTL_SECS = 90.0


def digest_cache_key(user_id: Optional[int]) -> str:
    return f"{DIGEST_KEY_PREFIX}{user_id if user_id is not None else 'guest'}"


@dataclass(frozen=True)
class CacheEntry:
    data: DailyDigest
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class DigestCache:
    """Two-tier digest cache: an in-process map in front of a persisted store.

    Built once at startup and handed to whoever needs it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: float = DEFAULT_DIGEST_TTL_SECS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._memory: dict[str, CacheEntry] = {}

    def get_fresh(self, key: str) -> Optional[DailyDigest]:
        entry = self.peek(key)
        if entry and entry.is_fresh(self.clock()):
            return entry.data
        return None

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Newest known entry for ``key``, expired or not."""
        entry = self._memory.get(key)
        if entry is not None:
            return entry
        entry = self._load_persisted(key)
        if entry is not None:
            self._memory[key] = entry
        return entry

    def put(self, key: str, data: DailyDigest) -> CacheEntry:
        expires_at = self.clock() + self.ttl_seconds
        entry = CacheEntry(data=data, expires_at=expires_at)
        self._memory[key] = entry
        payload = json.dumps(
            {"expires_at": expires_at, "data": data.model_dump(mode="json")}
        )
        result = self.store.set(
            key,
            payload,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc).replace(
                tzinfo=None
            ),
        )
        if not result.ok:
            # The memory tier still holds the value.
            logger.warning(f"digest_cache_persist_failed: key={key} error={result.error}")
        return entry

    def invalidate(self, key: str) -> None:
        self._memory.pop(key, None)
        self.store.delete(key)

    def _load_persisted(self, key: str) -> Optional[CacheEntry]:
        result = self.store.get(key)
        if not result.ok or not result.value:
            return None
        try:
            raw = json.loads(result.value)
            data = DailyDigest.model_validate(raw["data"])
            expires_at = float(raw["expires_at"])
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            logger.warning(f"digest_cache_corrupt: key={key} error={exc}")
            return None
        return CacheEntry(data=data, expires_at=expires_at)
