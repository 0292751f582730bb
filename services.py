from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from allocation import percent_of
from config import get_settings
from kv_store import KeyValueStore, StoreResult
from models import (
    Budget,
    BudgetScenario,
    BudgetScenarioItem,
    Category,
    CategoryType,
    ChargeStatus,
    Debt,
    DebtStatus,
    SalarySimulation,
    SalarySimulationItem,
    SubscriptionCharge,
    Transaction,
    TransactionType,
    WeeklyBudget,
)
from periods import end_of_month, month_key, parse_period, weeks_in_month
from rows import UNCATEGORIZED_LABEL
from schemas import (
    ApplyResult,
    BudgetIn,
    CategoryIn,
    ProjectionMethod,
    SalaryDraft,
    SalarySimulationDuplicateIn,
    SalarySimulationIn,
    SalarySimulationItemOut,
    SalarySimulationOut,
    ScenarioIn,
    ScenarioItemIn,
    ScenarioItemOut,
    ScenarioOut,
    ScenarioSnapshot,
    ScenarioUpdateIn,
    WeeklyBudgetIn,
)
from simulation import (
    UNKNOWN_CATEGORY_LABEL,
    Baseline,
    BaselineCategory,
    DraftItem,
    MonthlyRow,
    WeeklyRow,
    clean_weekly_delta,
    compute_snapshot,
    plan_apply,
    serialize_weekly_delta,
)

logger = logging.getLogger(__name__)

DEFAULT_SIMULATION_TITLE = "Simulasi Gajian"
DRAFT_KEY_PREFIX = "salary-simulation-draft:"


class NotFoundError(ValueError):
    pass


class SimulationValidationError(ValueError):
    pass


class ApplyFailedError(RuntimeError):
    pass


APPLY_FAILED_MESSAGE = "Gagal menerapkan simulasi ke anggaran. Tidak ada perubahan yang disimpan."


def get_current_user_id() -> int:
    return get_settings().default_user_id


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Kategori tidak ditemukan")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == CategoryType(data.type),
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Kategori dengan nama ini sudah ada")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            type=CategoryType(data.type),
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_monthly(self, period_month: date) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id, Budget.period_month == period_month)
            .order_by(Budget.category_id.is_(None).desc(), Budget.id)
        )
        return self.session.scalars(stmt).all()

    def list_weekly(self, period_month: date) -> list[WeeklyBudget]:
        stmt = (
            select(WeeklyBudget)
            .where(
                WeeklyBudget.user_id == self.user_id,
                WeeklyBudget.week_start >= period_month,
                WeeklyBudget.week_start <= end_of_month(period_month),
            )
            .order_by(WeeklyBudget.week_start, WeeklyBudget.id)
        )
        return self.session.scalars(stmt).all()

    def upsert_monthly(self, data: BudgetIn) -> Budget:
        period_month = parse_period(data.period)
        if data.category_id is not None:
            category = CategoryService(self.session, self.user_id).get(data.category_id)
            if category.type != CategoryType.expense:
                raise ValueError("Budget hanya untuk kategori pengeluaran")
        budget = self.stage_monthly(
            period_month,
            data.category_id,
            data.planned,
            carryover_enabled=data.carryover_enabled,
            notes=data.notes,
            name=data.name,
        )
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def upsert_weekly(self, data: WeeklyBudgetIn) -> WeeklyBudget:
        CategoryService(self.session, self.user_id).get(data.category_id)
        row = self.stage_weekly(
            data.category_id,
            data.week_start,
            data.planned,
            carryover_enabled=data.carryover_enabled,
            notes=data.notes,
        )
        self.session.commit()
        self.session.refresh(row)
        return row

    def stage_monthly(
        self,
        period_month: date,
        category_id: Optional[int],
        planned: Decimal,
        *,
        carryover_enabled: bool = False,
        notes: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Budget:
        """Insert or update one monthly row without committing."""
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.period_month == period_month,
            Budget.category_id.is_(None)
            if category_id is None
            else Budget.category_id == category_id,
        )
        existing = self.session.scalar(stmt)
        if existing:
            existing.planned = planned
            existing.carryover_enabled = carryover_enabled
            if notes is not None:
                existing.notes = notes
            if name is not None:
                existing.name = name
            self.session.flush()
            return existing

        budget = Budget(
            user_id=self.user_id,
            category_id=category_id,
            name=name,
            planned=planned,
            period_month=period_month,
            carryover_enabled=carryover_enabled,
            notes=notes,
        )
        self.session.add(budget)
        self.session.flush()
        return budget

    def stage_weekly(
        self,
        category_id: int,
        week_start: date,
        planned: Decimal,
        *,
        carryover_enabled: bool = False,
        notes: Optional[str] = None,
    ) -> WeeklyBudget:
        existing = self.session.scalar(
            select(WeeklyBudget).where(
                WeeklyBudget.user_id == self.user_id,
                WeeklyBudget.category_id == category_id,
                WeeklyBudget.week_start == week_start,
            )
        )
        if existing:
            existing.planned = planned
            existing.carryover_enabled = carryover_enabled
            if notes is not None:
                existing.notes = notes
            self.session.flush()
            return existing

        row = WeeklyBudget(
            user_id=self.user_id,
            category_id=category_id,
            week_start=week_start,
            planned=planned,
            carryover_enabled=carryover_enabled,
            notes=notes,
        )
        self.session.add(row)
        self.session.flush()
        return row


def salary_simulation_out(simulation: SalarySimulation) -> SalarySimulationOut:
    total = sum((item.allocation_amount for item in simulation.items), Decimal("0"))
    return SalarySimulationOut(
        id=simulation.id,
        title=simulation.title,
        salary_amount=simulation.salary_amount,
        period_month=simulation.period_month,
        notes=simulation.notes,
        total_allocations=total,
        remaining=simulation.salary_amount - total,
        item_count=len(simulation.items),
        created_at=simulation.created_at,
        updated_at=simulation.updated_at,
        items=[
            SalarySimulationItemOut(
                id=item.id,
                category_id=item.category_id,
                category_name=item.category.name if item.category else UNCATEGORIZED_LABEL,
                allocation_amount=item.allocation_amount,
                allocation_percent=item.allocation_percent,
                notes=item.notes,
            )
            for item in simulation.items
        ],
    )


class SalarySimulationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _validate(self, data: SalarySimulationIn) -> date:
        if data.salary_amount <= 0:
            raise SimulationValidationError("Nominal gaji harus lebih dari 0")
        if not data.items:
            raise SimulationValidationError("Pilih minimal satu kategori untuk dialokasikan")
        period_month = parse_period(data.period)
        category_ids = {item.category_id for item in data.items}
        found = dict(
            self.session.execute(
                select(Category.id, Category.type).where(
                    Category.user_id == self.user_id, Category.id.in_(category_ids)
                )
            ).all()
        )
        if set(found) != category_ids:
            raise SimulationValidationError("Kategori tidak ditemukan")
        if any(kind != CategoryType.expense for kind in found.values()):
            raise SimulationValidationError("Alokasi gaji hanya untuk kategori pengeluaran")
        return period_month

    def _build_items(self, data: SalarySimulationIn) -> list[SalarySimulationItem]:
        # percent is always derived from the amount; client values are ignored
        return [
            SalarySimulationItem(
                category_id=item.category_id,
                allocation_amount=item.allocation_amount,
                allocation_percent=percent_of(item.allocation_amount, data.salary_amount),
                notes=item.notes,
            )
            for item in data.items
        ]

    def get(self, simulation_id: int) -> SalarySimulation:
        simulation = self.session.scalar(
            select(SalarySimulation)
            .options(
                selectinload(SalarySimulation.items).joinedload(SalarySimulationItem.category)
            )
            .where(SalarySimulation.id == simulation_id)
        )
        if not simulation or simulation.user_id != self.user_id:
            raise NotFoundError("Simulasi tidak ditemukan")
        return simulation

    def list(self, period_month: Optional[date] = None) -> list[SalarySimulation]:
        stmt = (
            select(SalarySimulation)
            .options(
                selectinload(SalarySimulation.items).joinedload(SalarySimulationItem.category)
            )
            .where(SalarySimulation.user_id == self.user_id)
            .order_by(SalarySimulation.created_at.desc(), SalarySimulation.id.desc())
        )
        if period_month is not None:
            stmt = stmt.where(SalarySimulation.period_month == period_month)
        return self.session.scalars(stmt).all()

    def create(self, data: SalarySimulationIn) -> SalarySimulation:
        period_month = self._validate(data)
        simulation = SalarySimulation(
            user_id=self.user_id,
            title=(data.title or "").strip() or None,
            salary_amount=data.salary_amount,
            period_month=period_month,
            notes=data.notes,
            items=self._build_items(data),
        )
        self.session.add(simulation)
        self.session.commit()
        logger.info(
            f"salary_simulation_created: user={self.user_id} id={simulation.id} items={len(data.items)}"
        )
        return self.get(simulation.id)

    def update(self, simulation_id: int, data: SalarySimulationIn) -> SalarySimulation:
        simulation = self.get(simulation_id)
        period_month = self._validate(data)
        simulation.title = (data.title or "").strip() or None
        simulation.salary_amount = data.salary_amount
        simulation.period_month = period_month
        simulation.notes = data.notes
        simulation.items = self._build_items(data)
        simulation.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.expire_all()
        return self.get(simulation_id)

    def duplicate(
        self,
        simulation_id: int,
        overrides: Optional[SalarySimulationDuplicateIn] = None,
        *,
        today: Optional[date] = None,
    ) -> SalarySimulation:
        try:
            source = self.get(simulation_id)
        except NotFoundError as exc:
            raise NotFoundError("Simulasi sumber tidak ditemukan") from exc
        overrides = overrides or SalarySimulationDuplicateIn()
        today = today or date.today()
        title = overrides.title or (
            f"{source.title or DEFAULT_SIMULATION_TITLE} (Duplikat {today:%d/%m/%Y})"
        )
        data = SalarySimulationIn(
            title=title,
            salary_amount=(
                overrides.salary_amount
                if overrides.salary_amount is not None
                else source.salary_amount
            ),
            period=overrides.period or month_key(source.period_month),
            notes=overrides.notes if overrides.notes is not None else source.notes,
            items=[
                {
                    "category_id": item.category_id,
                    "allocation_amount": item.allocation_amount,
                    "notes": item.notes,
                }
                for item in source.items
            ],
        )
        return self.create(data)

    def delete(self, simulation_id: int) -> None:
        simulation = self.get(simulation_id)
        self.session.delete(simulation)
        self.session.commit()

    def apply(self, simulation_id: int) -> ApplyResult:
        """Write every allocation into the month's budgets, all or nothing."""
        simulation = self.get(simulation_id)
        amounts: dict[int, Decimal] = {}
        for item in simulation.items:
            amounts[item.category_id] = item.allocation_amount

        budgets = BudgetService(self.session, self.user_id)
        try:
            for category_id, amount in amounts.items():
                existing = self.session.scalar(
                    select(Budget).where(
                        Budget.user_id == self.user_id,
                        Budget.period_month == simulation.period_month,
                        Budget.category_id == category_id,
                    )
                )
                budgets.stage_monthly(
                    simulation.period_month,
                    category_id,
                    amount,
                    carryover_enabled=existing.carryover_enabled if existing else False,
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"salary_simulation_apply_failed: id={simulation_id}")
            raise ApplyFailedError(APPLY_FAILED_MESSAGE) from exc
        logger.info(
            f"salary_simulation_applied: user={self.user_id} id={simulation_id} monthly={len(amounts)}"
        )
        return ApplyResult(monthly_updated=len(amounts), weekly_updated=0)


def scenario_out(scenario: BudgetScenario) -> ScenarioOut:
    return ScenarioOut(
        id=scenario.id,
        name=scenario.name,
        period=month_key(scenario.period_month),
        include_weekly=scenario.include_weekly,
        created_at=scenario.created_at,
        updated_at=scenario.updated_at,
        items=[
            ScenarioItemOut(
                category_id=item.category_id,
                delta_monthly=item.delta_monthly,
                delta_weekly=clean_weekly_delta(item.delta_weekly),
                locked=item.locked,
            )
            for item in scenario.items
        ],
    )


def draft_items(items: Iterable[BudgetScenarioItem]) -> dict[int, DraftItem]:
    return {
        item.category_id: DraftItem(
            delta_monthly=item.delta_monthly or Decimal("0"),
            delta_weekly=clean_weekly_delta(item.delta_weekly),
            locked=bool(item.locked),
        )
        for item in items
    }


class BudgetScenarioService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list(self, period_month: Optional[date] = None) -> list[BudgetScenario]:
        stmt = (
            select(BudgetScenario)
            .where(BudgetScenario.user_id == self.user_id)
            .order_by(BudgetScenario.created_at.desc(), BudgetScenario.id.desc())
        )
        if period_month is not None:
            stmt = stmt.where(BudgetScenario.period_month == period_month)
        return self.session.scalars(stmt).all()

    def get(self, scenario_id: int) -> BudgetScenario:
        scenario = self.session.scalar(
            select(BudgetScenario)
            .options(selectinload(BudgetScenario.items))
            .where(BudgetScenario.id == scenario_id)
        )
        if not scenario or scenario.user_id != self.user_id:
            raise NotFoundError("Skenario tidak ditemukan")
        return scenario

    def create(self, data: ScenarioIn) -> BudgetScenario:
        period_month = parse_period(data.period)
        scenario = BudgetScenario(
            user_id=self.user_id,
            name=data.name.strip(),
            period_month=period_month,
            include_weekly=data.include_weekly,
        )
        if data.source_scenario_id is not None:
            source = self.get(data.source_scenario_id)
            scenario.items = [
                BudgetScenarioItem(
                    category_id=item.category_id,
                    delta_monthly=item.delta_monthly,
                    delta_weekly=item.delta_weekly,
                    locked=item.locked,
                )
                for item in source.items
            ]
        self.session.add(scenario)
        self.session.commit()
        return self.get(scenario.id)

    def update(self, scenario_id: int, data: ScenarioUpdateIn) -> BudgetScenario:
        scenario = self.get(scenario_id)
        if data.name is not None:
            scenario.name = data.name.strip()
        if data.include_weekly is not None:
            scenario.include_weekly = data.include_weekly
        self.session.commit()
        return self.get(scenario_id)

    def delete(self, scenario_id: int) -> None:
        scenario = self.get(scenario_id)
        self.session.delete(scenario)
        self.session.commit()

    def save_items(self, scenario_id: int, items: list[ScenarioItemIn]) -> BudgetScenario:
        """Replace the scenario's items; unlocked items without any delta are dropped."""
        scenario = self.get(scenario_id)
        incoming: dict[int, ScenarioItemIn] = {}
        for item in items:
            draft = DraftItem(
                delta_monthly=item.delta_monthly,
                delta_weekly=item.delta_weekly.model_dump(),
                locked=item.locked,
            )
            if draft.is_empty:
                continue
            incoming[item.category_id] = item

        existing = {item.category_id: item for item in scenario.items}
        for category_id, stale in existing.items():
            if category_id not in incoming:
                scenario.items.remove(stale)
        for category_id, item in incoming.items():
            row = existing.get(category_id)
            if row is None:
                row = BudgetScenarioItem(category_id=category_id)
                scenario.items.append(row)
            row.delta_monthly = item.delta_monthly
            row.delta_weekly = serialize_weekly_delta(item.delta_weekly.model_dump())
            row.locked = item.locked
        scenario.updated_at = datetime.utcnow()
        self.session.commit()
        self.session.expire_all()
        return self.get(scenario_id)

    def baseline(self, period_month: date) -> Baseline:
        month_end = end_of_month(period_month)
        names = {
            category.id: category
            for category in self.session.scalars(
                select(Category).where(Category.user_id == self.user_id)
            ).all()
        }
        categories: dict[int, dict] = {}

        def entry(category_id: int, fallback: str) -> dict:
            if category_id not in categories:
                known = names.get(category_id)
                categories[category_id] = {
                    "name": known.name if known else fallback,
                    "type": known.type.value if known else "expense",
                    "planned_monthly": Decimal("0"),
                    "planned_weekly": Decimal("0"),
                    "carryover_enabled": False,
                }
            return categories[category_id]

        monthly_rows: list[MonthlyRow] = []
        for budget in BudgetService(self.session, self.user_id).list_monthly(period_month):
            if budget.category_id is None:
                continue
            base = entry(budget.category_id, UNKNOWN_CATEGORY_LABEL)
            base["planned_monthly"] += budget.planned
            base["carryover_enabled"] = base["carryover_enabled"] or budget.carryover_enabled
            monthly_rows.append(
                MonthlyRow(
                    id=budget.id,
                    category_id=budget.category_id,
                    planned=budget.planned,
                    carryover_enabled=budget.carryover_enabled,
                    notes=budget.notes,
                )
            )

        for category in names.values():
            if category.type == CategoryType.expense:
                entry(category.id, category.name)

        weekly_rows: dict[int, list[WeeklyRow]] = defaultdict(list)
        for row in BudgetService(self.session, self.user_id).list_weekly(period_month):
            entry(row.category_id, UNKNOWN_CATEGORY_LABEL)["planned_weekly"] += row.planned
            weekly_rows[row.category_id].append(
                WeeklyRow(
                    id=row.id,
                    category_id=row.category_id,
                    week_start=row.week_start,
                    planned=row.planned,
                    carryover_enabled=row.carryover_enabled,
                    notes=row.notes,
                )
            )

        spent = self.session.execute(
            select(Transaction.category_id, func.sum(Transaction.amount))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.deleted_at.is_(None),
                Transaction.category_id.is_not(None),
                Transaction.date.between(period_month, month_end),
            )
            .group_by(Transaction.category_id)
        ).all()
        actual_by_category = {
            category_id: Decimal(str(total or 0)) for category_id, total in spent
        }
        for category_id in actual_by_category:
            entry(category_id, UNKNOWN_CATEGORY_LABEL)

        baseline_categories = sorted(
            (
                BaselineCategory(category_id=category_id, **values)
                for category_id, values in categories.items()
            ),
            key=lambda category: (category.name.lower(), category.category_id),
        )
        return Baseline(
            period_month=period_month,
            categories=baseline_categories,
            actual_by_category=actual_by_category,
            monthly_rows=monthly_rows,
            weekly_rows_by_category=dict(weekly_rows),
            weeks=weeks_in_month(period_month),
        )

    def snapshot(
        self,
        scenario_id: int,
        *,
        today: date,
        method: ProjectionMethod = "linear",
        include_carryover: bool = False,
    ) -> ScenarioSnapshot:
        scenario = self.get(scenario_id)
        return compute_snapshot(
            self.baseline(scenario.period_month),
            draft_items(scenario.items),
            today=today,
            include_weekly=scenario.include_weekly,
            method=method,
            include_carryover=include_carryover,
        )

    def apply(self, scenario_id: int) -> ApplyResult:
        """Write the scenario into the live budgets in a single transaction."""
        scenario = self.get(scenario_id)
        plan = plan_apply(
            self.baseline(scenario.period_month),
            draft_items(scenario.items),
            include_weekly=scenario.include_weekly,
        )
        budgets = BudgetService(self.session, self.user_id)
        try:
            for monthly in plan.monthly:
                budgets.stage_monthly(
                    scenario.period_month,
                    monthly.category_id,
                    monthly.after,
                    carryover_enabled=monthly.carryover_enabled,
                    notes=monthly.notes,
                )
            for weekly in plan.weekly:
                budgets.stage_weekly(
                    weekly.category_id,
                    weekly.week_start,
                    weekly.after,
                    carryover_enabled=weekly.carryover_enabled,
                    notes=weekly.notes,
                )
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"budget_scenario_apply_failed: id={scenario_id}")
            raise ApplyFailedError(APPLY_FAILED_MESSAGE) from exc
        logger.info(
            f"budget_scenario_applied: user={self.user_id} id={scenario_id} "
            f"monthly={len(plan.monthly)} weekly={len(plan.weekly)}"
        )
        return ApplyResult(monthly_updated=len(plan.monthly), weekly_updated=len(plan.weekly))


class DraftService:
    """Unsaved salary simulation edits, kept so a reload does not lose them.

    Best effort only: every call returns a ``StoreResult`` and never raises.
    """

    def __init__(self, store: KeyValueStore, user_id: Optional[int] = None) -> None:
        self.store = store
        self.user_id = user_id or get_current_user_id()

    @property
    def key(self) -> str:
        return f"{DRAFT_KEY_PREFIX}{self.user_id}"

    def save(self, draft: SalaryDraft) -> StoreResult[None]:
        return self.store.set(self.key, draft.model_dump_json())

    def load(self) -> StoreResult[SalaryDraft]:
        result = self.store.get(self.key)
        if not result.ok or not result.value:
            return StoreResult(ok=result.ok, error=result.error)
        try:
            draft = SalaryDraft.model_validate(json.loads(result.value))
        except (ValueError, ValidationError) as exc:
            logger.warning(f"salary_draft_corrupt: user={self.user_id} error={exc}")
            return StoreResult.success(None)
        return StoreResult.success(draft)

    def clear(self) -> StoreResult[None]:
        return self.store.delete(self.key)


def mark_overdue(session: Session, today: date) -> tuple[int, int]:
    """Flag past-due subscription charges and debts. Returns ``(charges, debts)``."""
    charges = session.execute(
        update(SubscriptionCharge)
        .where(
            SubscriptionCharge.status == ChargeStatus.due,
            SubscriptionCharge.due_date < today,
        )
        .values(status=ChargeStatus.overdue)
    )
    debts = session.execute(
        update(Debt)
        .where(
            Debt.status == DebtStatus.ongoing,
            Debt.due_date.is_not(None),
            Debt.due_date < today,
        )
        .values(status=DebtStatus.overdue)
    )
    return int(charges.rowcount or 0), int(debts.rowcount or 0)
