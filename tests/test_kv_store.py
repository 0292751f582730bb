from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cache import DigestCache, digest_cache_key
from database import Base
from kv_store import SqlKeyValueStore
from schemas import AllocationRowIn, DailyDigest, SalaryDraft
from services import DraftService


@pytest.fixture()
def store(tmp_path) -> SqlKeyValueStore:
    engine = create_engine(f"sqlite:///{tmp_path / 'kv.db'}")
    Base.metadata.create_all(engine)
    return SqlKeyValueStore(sessionmaker(bind=engine))


def test_set_get_overwrite_delete(store) -> None:
    assert store.get("a").value is None
    assert store.set("a", "1").ok
    assert store.set("a", "2").ok
    assert store.get("a").value == "2"
    assert store.delete("a").ok
    assert store.get("a").value is None


def test_delete_expired_only_touches_prefix(store) -> None:
    now = datetime(2024, 3, 13, 12, 0)
    store.set("digest:1", "old", expires_at=now - timedelta(hours=2))
    store.set("digest:2", "new", expires_at=now + timedelta(hours=2))
    store.set("digest:3", "forever")
    store.set("other:1", "old", expires_at=now - timedelta(hours=2))

    result = store.delete_expired("digest:", now)

    assert result.ok
    assert result.value == 1
    assert store.get("digest:1").value is None
    assert store.get("digest:2").value == "new"
    assert store.get("digest:3").value == "forever"
    assert store.get("other:1").value == "old"


def test_failures_are_reported_not_raised(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    broken = SqlKeyValueStore(sessionmaker(bind=engine))

    assert broken.get("a").ok is False
    result = broken.set("a", "1")
    assert result.ok is False
    assert result.error is not None
    assert broken.delete("a").ok is False


def _draft() -> SalaryDraft:
    return SalaryDraft(
        salary_amount=Decimal("5000000"),
        period_month=date(2024, 3, 1),
        title="Gaji Maret",
        allocations=[
            AllocationRowIn(
                category_id=1,
                category_name="Makan",
                amount=Decimal("1500000"),
                percent=Decimal("30"),
                locked=True,
            )
        ],
    )


def test_draft_save_load_clear(store) -> None:
    drafts = DraftService(store, user_id=3)

    assert drafts.load().value is None
    assert drafts.save(_draft()).ok

    loaded = drafts.load()
    assert loaded.ok
    assert loaded.value.title == "Gaji Maret"
    assert loaded.value.allocations[0].locked is True
    assert DraftService(store, user_id=4).load().value is None

    assert drafts.clear().ok
    assert drafts.load().value is None


def test_corrupt_draft_loads_as_empty(store) -> None:
    drafts = DraftService(store, user_id=3)
    store.set(drafts.key, "{not json")

    result = drafts.load()

    assert result.ok
    assert result.value is None


def test_draft_store_failure_is_surfaced(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    drafts = DraftService(SqlKeyValueStore(sessionmaker(bind=engine)), user_id=3)

    assert drafts.save(_draft()).ok is False
    assert drafts.load().ok is False


def test_digest_cache_survives_restart(store) -> None:
    now = [1_000.0]
    DigestCache(store, clock=lambda: now[0]).put(
        digest_cache_key(1), DailyDigest(insight="tersimpan", today_key="2024-03-13")
    )

    restarted = DigestCache(store, clock=lambda: now[0])
    assert restarted.get_fresh(digest_cache_key(1)).insight == "tersimpan"

    now[0] += 91
    assert restarted.get_fresh(digest_cache_key(1)) is None
    assert restarted.peek(digest_cache_key(1)).data.today_key == "2024-03-13"


def test_corrupt_digest_entry_is_ignored(store) -> None:
    store.set(digest_cache_key(1), '{"expires_at": "soon"}')

    assert DigestCache(store).peek(digest_cache_key(1)) is None


def test_invalidate_clears_both_tiers(store) -> None:
    cache = DigestCache(store)
    key = digest_cache_key(2)
    cache.put(key, DailyDigest(insight="x"))

    cache.invalidate(key)

    assert cache.peek(key) is None
    assert store.get(key).value is None
