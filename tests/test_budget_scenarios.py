import csv
from datetime import date, datetime
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from csv_utils import SNAPSHOT_HEADER, export_snapshot
from database import Base
from models import (
    Budget,
    Category,
    CategoryType,
    Transaction,
    TransactionType,
    WeeklyBudget,
)
from schemas import (
    ScenarioIn,
    ScenarioItemIn,
    ScenarioSnapshot,
    ScenarioUpdateIn,
    SnapshotCategory,
)
from services import BudgetScenarioService, NotFoundError, scenario_out

APRIL = date(2024, 4, 1)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session) -> dict[str, Category]:
    cats = {
        "food": Category(user_id=1, name="Makan", type=CategoryType.expense),
        "transport": Category(user_id=1, name="transport", type=CategoryType.expense),
        "salary": Category(user_id=1, name="Gaji", type=CategoryType.income),
        "foreign": Category(user_id=2, name="Rahasia", type=CategoryType.expense),
    }
    session.add_all(cats.values())
    session.flush()
    session.add_all(
        [
            Budget(
                user_id=1,
                category_id=cats["food"].id,
                planned=Decimal("1000000"),
                period_month=APRIL,
                carryover_enabled=True,
                notes="pokok",
            ),
            Budget(
                user_id=1,
                category_id=cats["foreign"].id,
                planned=Decimal("50000"),
                period_month=APRIL,
            ),
            Budget(
                user_id=1,
                category_id=cats["transport"].id,
                planned=Decimal("999999"),
                period_month=date(2024, 5, 1),
            ),
            WeeklyBudget(
                user_id=1,
                category_id=cats["food"].id,
                week_start=date(2024, 4, 1),
                planned=Decimal("100000"),
            ),
            WeeklyBudget(
                user_id=1,
                category_id=cats["food"].id,
                week_start=date(2024, 4, 8),
                planned=Decimal("300000"),
            ),
            WeeklyBudget(
                user_id=1,
                category_id=cats["food"].id,
                week_start=date(2024, 5, 6),
                planned=Decimal("700000"),
            ),
        ]
    )
    for day, amount, kind, deleted in [
        (date(2024, 4, 5), "200000", TransactionType.expense, None),
        (date(2024, 4, 20), "400000", TransactionType.expense, None),
        (date(2024, 4, 21), "900000", TransactionType.expense, datetime(2024, 4, 22)),
        (date(2024, 4, 25), "5000000", TransactionType.income, None),
        (date(2024, 3, 31), "80000", TransactionType.expense, None),
    ]:
        session.add(
            Transaction(
                user_id=1,
                category_id=cats["food"].id,
                type=kind,
                amount=Decimal(amount),
                date=day,
                deleted_at=deleted,
            )
        )
    session.add(
        Transaction(
            user_id=2,
            category_id=cats["foreign"].id,
            type=TransactionType.expense,
            amount=Decimal("12345"),
            date=date(2024, 4, 2),
        )
    )
    session.commit()
    return cats


def food_item(cats) -> ScenarioItemIn:
    return ScenarioItemIn(
        category_id=cats["food"].id,
        delta_monthly=Decimal("100000"),
        delta_weekly={"mon": Decimal("20000"), "fri": Decimal("20000")},
    )


def test_baseline_collects_budgets_weeks_and_spend() -> None:
    session = make_session()
    cats = seed(session)

    baseline = BudgetScenarioService(session, user_id=1).baseline(APRIL)

    assert [c.name for c in baseline.categories] == [
        "Kategori tidak diketahui",
        "Makan",
        "transport",
    ]
    food = next(c for c in baseline.categories if c.category_id == cats["food"].id)
    assert food.planned_monthly == Decimal("1000000")
    assert food.planned_weekly == Decimal("400000")
    assert food.carryover_enabled is True
    assert baseline.actual_by_category == {cats["food"].id: Decimal("600000")}
    assert len(baseline.weekly_rows_by_category[cats["food"].id]) == 2
    assert len(baseline.weeks) == 5
    assert baseline.period == "2024-04"


def test_save_items_drops_empty_and_removes_stale() -> None:
    session = make_session()
    cats = seed(session)
    service = BudgetScenarioService(session, user_id=1)
    scenario = service.create(ScenarioIn(name="Hemat April", period="2024-04"))

    scenario = service.save_items(
        scenario.id, [food_item(cats), ScenarioItemIn(category_id=cats["transport"].id)]
    )
    assert [item.category_id for item in scenario.items] == [cats["food"].id]
    assert scenario.items[0].delta_weekly == {"mon": 20000.0, "fri": 20000.0}

    scenario = service.save_items(
        scenario.id, [ScenarioItemIn(category_id=cats["transport"].id, locked=True)]
    )
    assert [(item.category_id, item.locked) for item in scenario.items] == [
        (cats["transport"].id, True)
    ]

    out = scenario_out(scenario)
    assert out.period == "2024-04"
    assert set(out.items[0].delta_weekly) == {"mon", "tue", "wed", "thu", "fri", "sat", "sun"}


def test_scenario_crud_and_copy_from_source() -> None:
    session = make_session()
    cats = seed(session)
    service = BudgetScenarioService(session, user_id=1)
    source = service.create(ScenarioIn(name="Dasar", period="2024-04"))
    service.save_items(source.id, [food_item(cats)])

    copy = service.create(
        ScenarioIn(name="Salinan", period="2024-04", source_scenario_id=source.id)
    )
    assert [item.delta_monthly for item in copy.items] == [Decimal("100000")]

    renamed = service.update(copy.id, ScenarioUpdateIn(name=" Ketat ", include_weekly=False))
    assert renamed.name == "Ketat"
    assert renamed.include_weekly is False

    assert [s.id for s in service.list(APRIL)] == [copy.id, source.id]
    assert service.list(date(2024, 5, 1)) == []

    service.delete(source.id)
    with pytest.raises(NotFoundError, match="Skenario tidak ditemukan"):
        service.get(source.id)
    with pytest.raises(NotFoundError):
        BudgetScenarioService(session, user_id=2).get(copy.id)


def test_snapshot_and_csv_export() -> None:
    session = make_session()
    cats = seed(session)
    service = BudgetScenarioService(session, user_id=1)
    scenario = service.create(ScenarioIn(name="Hemat April", period="2024-04"))
    service.save_items(scenario.id, [food_item(cats)])

    snapshot = service.snapshot(scenario.id, today=date(2024, 5, 2), method="static")

    food = next(c for c in snapshot.categories if c.category_id == cats["food"].id)
    assert food.scenario_planned == Decimal("1540000")
    assert food.projected == Decimal("600000")
    assert snapshot.days_elapsed == 30

    rows = list(csv.reader(StringIO(export_snapshot(snapshot))))
    assert rows[0] == SNAPSHOT_HEADER
    assert ["Makan", "1400000", "140000", "1540000", "600000"] in rows


def test_csv_export_neutralises_formulas() -> None:
    snapshot = ScenarioSnapshot(
        period="2024-04",
        method="linear",
        include_weekly=True,
        include_carryover=False,
        days_elapsed=1,
        days_in_month=30,
        categories=[
            SnapshotCategory(
                category_id=1,
                name="=SUM(A1:A9)",
                baseline_planned=Decimal("10.50"),
                scenario_planned=Decimal("10.50"),
                baseline_monthly=Decimal("10.50"),
                scenario_monthly=Decimal("10.50"),
                baseline_weekly=Decimal("0"),
                scenario_weekly=Decimal("0"),
                delta_monthly=Decimal("0"),
                delta_weekly=Decimal("0"),
                actual=Decimal("0"),
                projected=Decimal("0"),
                ratio=0.0,
                status="safe",
                locked=False,
            )
        ],
    )

    rows = list(csv.reader(StringIO(export_snapshot(snapshot))))

    assert rows[1][0] == "\t=SUM(A1:A9)"
    assert rows[1][1] == "11"


def test_apply_writes_monthly_and_weekly_rows_once() -> None:
    session = make_session()
    cats = seed(session)
    service = BudgetScenarioService(session, user_id=1)
    scenario = service.create(ScenarioIn(name="Hemat April", period="2024-04"))
    service.save_items(scenario.id, [food_item(cats)])

    result = service.apply(scenario.id)

    assert (result.monthly_updated, result.weekly_updated) == (1, 2)
    food_budget = session.scalar(
        select(Budget).where(Budget.category_id == cats["food"].id, Budget.period_month == APRIL)
    )
    assert food_budget.planned == Decimal("1100000")
    assert food_budget.carryover_enabled is True
    assert food_budget.notes == "pokok"
    weekly = session.scalars(
        select(WeeklyBudget.planned)
        .where(WeeklyBudget.week_start < date(2024, 5, 1))
        .order_by(WeeklyBudget.week_start)
    ).all()
    assert weekly == [Decimal("110000"), Decimal("330000")]
