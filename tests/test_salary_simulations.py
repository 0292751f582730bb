from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Budget, Category, CategoryType
from schemas import SalarySimulationDuplicateIn, SalarySimulationIn
from services import (
    ApplyFailedError,
    BudgetService,
    NotFoundError,
    SalarySimulationService,
    SimulationValidationError,
    salary_simulation_out,
)

TODAY = date(2026, 10, 18)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed_categories(session) -> dict[str, Category]:
    categories = {
        "food": Category(user_id=1, name="Makan", type=CategoryType.expense),
        "transport": Category(user_id=1, name="Transport", type=CategoryType.expense),
        "salary": Category(user_id=1, name="Gaji", type=CategoryType.income),
        "foreign": Category(user_id=2, name="Makan", type=CategoryType.expense),
    }
    session.add_all(categories.values())
    session.commit()
    return categories


def simulation_in(cats, **overrides) -> SalarySimulationIn:
    data = {
        "title": "Gaji Oktober",
        "salary_amount": Decimal("5000000"),
        "period": "2026-10",
        "items": [
            {"category_id": cats["food"].id, "allocation_amount": Decimal("1500000")},
            {"category_id": cats["transport"].id, "allocation_amount": Decimal("2000000")},
        ],
    }
    data.update(overrides)
    return SalarySimulationIn(**data)


def test_validation_messages() -> None:
    session = make_session()
    cats = seed_categories(session)
    service = SalarySimulationService(session, user_id=1)

    with pytest.raises(SimulationValidationError, match="Nominal gaji harus lebih dari 0"):
        service.create(simulation_in(cats, salary_amount=Decimal("0")))
    with pytest.raises(SimulationValidationError, match="Pilih minimal satu kategori"):
        service.create(simulation_in(cats, items=[]))
    with pytest.raises(SimulationValidationError, match="Kategori tidak ditemukan"):
        service.create(
            simulation_in(
                cats,
                items=[{"category_id": cats["foreign"].id, "allocation_amount": Decimal("1")}],
            )
        )
    with pytest.raises(ValueError, match="YYYY-MM"):
        service.create(simulation_in(cats, period="Oktober"))
    with pytest.raises(SimulationValidationError, match="kategori pengeluaran"):
        service.create(
            simulation_in(
                cats,
                items=[{"category_id": cats["salary"].id, "allocation_amount": Decimal("1000000")}],
            )
        )
    assert service.list() == []
    assert session.scalars(select(Budget)).all() == []


def _stored_percents(simulation) -> list[tuple[Decimal, Decimal]]:
    return [(item.allocation_amount, item.allocation_percent) for item in simulation.items]


def test_allocation_percent_follows_amount_and_salary() -> None:
    session = make_session()
    cats = seed_categories(session)
    service = SalarySimulationService(session, user_id=1)

    simulation = service.create(simulation_in(cats))
    assert _stored_percents(simulation) == [
        (Decimal("1500000"), Decimal("30")),
        (Decimal("2000000"), Decimal("40")),
    ]

    mismatched = service.create(
        simulation_in(
            cats,
            items=[
                {
                    "category_id": cats["food"].id,
                    "allocation_amount": Decimal("1500000"),
                    "allocation_percent": Decimal("99"),
                }
            ],
        )
    )
    assert _stored_percents(mismatched) == [(Decimal("1500000"), Decimal("30"))]

    updated = service.update(
        simulation.id,
        simulation_in(
            cats,
            salary_amount=Decimal("3000000"),
            items=[{"category_id": cats["food"].id, "allocation_amount": Decimal("1000000")}],
        ),
    )
    assert _stored_percents(updated) == [(Decimal("1000000"), Decimal("33.33"))]

    copy = service.duplicate(
        mismatched.id,
        SalarySimulationDuplicateIn(salary_amount=Decimal("10000000")),
        today=TODAY,
    )
    assert _stored_percents(copy) == [(Decimal("1500000"), Decimal("15"))]


def test_create_update_list_delete() -> None:
    session = make_session()
    cats = seed_categories(session)
    service = SalarySimulationService(session, user_id=1)

    simulation = service.create(simulation_in(cats))
    out = salary_simulation_out(simulation)
    assert out.period_month == date(2026, 10, 1)
    assert out.total_allocations == Decimal("3500000")
    assert out.remaining == Decimal("1500000")
    assert out.item_count == 2
    assert [item.category_name for item in out.items] == ["Makan", "Transport"]

    updated = service.update(
        simulation.id,
        simulation_in(
            cats,
            title="  ",
            items=[{"category_id": cats["food"].id, "allocation_amount": Decimal("1000000")}],
        ),
    )
    assert updated.title is None
    assert salary_simulation_out(updated).item_count == 1

    second = service.create(simulation_in(cats, period="2026-11"))
    assert [s.id for s in service.list()] == [second.id, simulation.id]
    assert [s.id for s in service.list(date(2026, 10, 1))] == [simulation.id]

    service.delete(simulation.id)
    with pytest.raises(NotFoundError):
        service.get(simulation.id)


def test_simulations_are_scoped_to_their_owner() -> None:
    session = make_session()
    cats = seed_categories(session)
    simulation = SalarySimulationService(session, user_id=1).create(simulation_in(cats))

    other = SalarySimulationService(session, user_id=2)
    with pytest.raises(NotFoundError, match="Simulasi tidak ditemukan"):
        other.get(simulation.id)
    with pytest.raises(NotFoundError):
        other.delete(simulation.id)
    assert other.list() == []


def test_duplicate_titles_and_overrides() -> None:
    session = make_session()
    cats = seed_categories(session)
    service = SalarySimulationService(session, user_id=1)
    source = service.create(simulation_in(cats, notes="catatan"))

    copy = service.duplicate(source.id, today=TODAY)
    assert copy.id != source.id
    assert copy.title == "Gaji Oktober (Duplikat 18/10/2026)"
    assert copy.notes == "catatan"
    assert len(copy.items) == 2

    untitled = service.create(simulation_in(cats, title=None))
    assert service.duplicate(untitled.id, today=TODAY).title == (
        "Simulasi Gajian (Duplikat 18/10/2026)"
    )

    overridden = service.duplicate(
        source.id,
        SalarySimulationDuplicateIn(
            title="Gaji November", salary_amount=Decimal("6000000"), period="2026-11"
        ),
        today=TODAY,
    )
    assert overridden.title == "Gaji November"
    assert overridden.salary_amount == Decimal("6000000")
    assert overridden.period_month == date(2026, 11, 1)

    with pytest.raises(NotFoundError, match="Simulasi sumber tidak ditemukan"):
        service.duplicate(9999, today=TODAY)


def test_apply_writes_budgets_and_keeps_carryover() -> None:
    session = make_session()
    cats = seed_categories(session)
    session.add(
        Budget(
            user_id=1,
            category_id=cats["food"].id,
            planned=Decimal("1000000"),
            period_month=date(2026, 10, 1),
            carryover_enabled=True,
        )
    )
    session.commit()
    service = SalarySimulationService(session, user_id=1)
    simulation = service.create(simulation_in(cats))

    result = service.apply(simulation.id)

    assert result.monthly_updated == 2
    assert result.weekly_updated == 0
    budgets = {
        b.category_id: b for b in BudgetService(session, user_id=1).list_monthly(date(2026, 10, 1))
    }
    assert budgets[cats["food"].id].planned == Decimal("1500000")
    assert budgets[cats["food"].id].carryover_enabled is True
    assert budgets[cats["transport"].id].planned == Decimal("2000000")
    assert budgets[cats["transport"].id].carryover_enabled is False


def test_apply_with_repeated_category_uses_last_amount() -> None:
    session = make_session()
    cats = seed_categories(session)
    service = SalarySimulationService(session, user_id=1)
    simulation = service.create(
        simulation_in(
            cats,
            items=[
                {"category_id": cats["food"].id, "allocation_amount": Decimal("100000")},
                {"category_id": cats["food"].id, "allocation_amount": Decimal("200000")},
            ],
        )
    )

    assert service.apply(simulation.id).monthly_updated == 1
    planned = session.scalars(select(Budget.planned)).all()
    assert planned == [Decimal("200000")]


def test_apply_failure_rolls_back_everything(monkeypatch) -> None:
    session = make_session()
    cats = seed_categories(session)
    session.add(
        Budget(
            user_id=1,
            category_id=cats["food"].id,
            planned=Decimal("1000000"),
            period_month=date(2026, 10, 1),
        )
    )
    session.commit()
    service = SalarySimulationService(session, user_id=1)
    simulation = service.create(simulation_in(cats))

    real_stage = BudgetService.stage_monthly
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise SQLAlchemyError("disk I/O error")
        return real_stage(self, *args, **kwargs)

    monkeypatch.setattr(BudgetService, "stage_monthly", flaky)

    with pytest.raises(ApplyFailedError, match="Gagal menerapkan simulasi"):
        service.apply(simulation.id)

    budgets = session.scalars(select(Budget)).all()
    assert len(budgets) == 1
    assert budgets[0].planned == Decimal("1000000")
