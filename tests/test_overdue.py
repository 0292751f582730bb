from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from kv_store import StoreResult
from models import (
    ChargeStatus,
    Debt,
    DebtStatus,
    Subscription,
    SubscriptionCharge,
)
from scheduler import SchedulerManager
from services import mark_overdue

TODAY = date(2024, 3, 13)


def test_mark_overdue_flags_only_past_due_open_items() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        netflix = Subscription(user_id=1, name="Netflix", amount=Decimal("54000"))
        session.add(netflix)
        session.flush()
        late = SubscriptionCharge(
            user_id=1, subscription_id=netflix.id, due_date=date(2024, 3, 12), amount=1
        )
        on_time = SubscriptionCharge(
            user_id=1, subscription_id=netflix.id, due_date=TODAY, amount=1
        )
        settled = SubscriptionCharge(
            user_id=1,
            subscription_id=netflix.id,
            due_date=date(2024, 3, 1),
            amount=1,
            status=ChargeStatus.paid,
        )
        late_debt = Debt(user_id=1, title="Pinjaman", due_date=date(2024, 3, 1), amount=1)
        open_debt = Debt(user_id=1, title="Kasbon", due_date=None, amount=1)
        paid_debt = Debt(
            user_id=1, title="Lunas", due_date=date(2024, 1, 1), amount=1, status=DebtStatus.paid
        )
        session.add_all([late, on_time, settled, late_debt, open_debt, paid_debt])
        session.commit()

        assert mark_overdue(session, TODAY) == (1, 1)
        session.commit()

        assert session.get(SubscriptionCharge, late.id).status == ChargeStatus.overdue
        assert session.get(SubscriptionCharge, on_time.id).status == ChargeStatus.due
        assert session.get(SubscriptionCharge, settled.id).status == ChargeStatus.paid
        assert session.get(Debt, late_debt.id).status == DebtStatus.overdue
        assert session.get(Debt, open_debt.id).status == DebtStatus.ongoing
        assert session.get(Debt, paid_debt.id).status == DebtStatus.paid

        assert mark_overdue(session, TODAY) == (0, 0)


class RecordingStore:
    def __init__(self) -> None:
        self.pruned: list[tuple[str, datetime]] = []

    def delete_expired(self, prefix: str, before: datetime) -> StoreResult[int]:
        self.pruned.append((prefix, before))
        return StoreResult.success(2)


def test_scheduler_prunes_only_digest_entries() -> None:
    store = RecordingStore()
    manager = SchedulerManager(store=store)

    manager._prune_digest_cache()

    assert len(store.pruned) == 1
    prefix, before = store.pruned[0]
    assert prefix == "digest:"
    assert before < datetime.utcnow()
    assert manager.scheduler.running is False
