"""Budget scenario math: baseline, projection, snapshot and apply plan.

Everything here is pure. ``BudgetScenarioService`` loads the baseline from the
database, calls into this module, and persists the planned updates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

from periods import days_in_month, end_of_month, month_key
from rows import to_decimal
from schemas import (
    BudgetStatus,
    ProjectionMethod,
    ScenarioSnapshot,
    SnapshotCategory,
    SnapshotTotals,
)

ZERO = Decimal("0")
EPSILON = Decimal("0.0001")
WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
RISK_RATIO = 0.9
UNKNOWN_CATEGORY_LABEL = "Kategori tidak diketahui"


@dataclass(frozen=True)
class BaselineCategory:
    category_id: int
    name: str
    type: Optional[str] = "expense"
    planned_monthly: Decimal = ZERO
    planned_weekly: Decimal = ZERO
    carryover_enabled: bool = False


@dataclass(frozen=True)
class MonthlyRow:
    id: int
    category_id: int
    planned: Decimal
    carryover_enabled: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class WeeklyRow:
    id: int
    category_id: int
    week_start: date
    planned: Decimal
    carryover_enabled: bool = False
    notes: Optional[str] = None


@dataclass
class Baseline:
    period_month: date
    categories: list[BaselineCategory] = field(default_factory=list)
    actual_by_category: dict[int, Decimal] = field(default_factory=dict)
    monthly_rows: list[MonthlyRow] = field(default_factory=list)
    weekly_rows_by_category: dict[int, list[WeeklyRow]] = field(default_factory=dict)
    weeks: list[date] = field(default_factory=list)

    @property
    def period(self) -> str:
        return month_key(self.period_month)


@dataclass(frozen=True)
class DraftItem:
    delta_monthly: Decimal = ZERO
    delta_weekly: Mapping[str, Decimal] = field(default_factory=dict)
    locked: bool = False

    @property
    def is_empty(self) -> bool:
        return (
            abs(self.delta_monthly) <= EPSILON
            and abs(sum_weekly_delta(self.delta_weekly)) <= EPSILON
            and not self.locked
        )


@dataclass(frozen=True)
class MonthlyUpdate:
    category_id: int
    before: Decimal
    after: Decimal
    carryover_enabled: bool
    notes: Optional[str]


@dataclass(frozen=True)
class WeeklyUpdate:
    category_id: int
    week_start: date
    before: Decimal
    after: Decimal
    carryover_enabled: bool
    row_id: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ApplyPlan:
    monthly: list[MonthlyUpdate] = field(default_factory=list)
    weekly: list[WeeklyUpdate] = field(default_factory=list)


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def clean_weekly_delta(value: Any) -> dict[str, Decimal]:
    """Weekday-keyed deltas with every key present; junk becomes 0."""
    source = value if isinstance(value, Mapping) else {}
    return {key: to_decimal(source.get(key)) for key in WEEKDAY_KEYS}


def sum_weekly_delta(delta: Optional[Mapping[str, Any]]) -> Decimal:
    if not delta:
        return ZERO
    return sum((to_decimal(delta.get(key)) for key in WEEKDAY_KEYS), ZERO)


def serialize_weekly_delta(delta: Mapping[str, Any]) -> Optional[dict[str, float]]:
    """Compact JSON form: only non-zero days, or None when nothing is set."""
    if abs(sum_weekly_delta(delta)) <= EPSILON:
        return None
    result = {
        key: float(to_decimal(delta.get(key)))
        for key in WEEKDAY_KEYS
        if abs(to_decimal(delta.get(key))) > EPSILON
    }
    return result or None


def days_info(period_month: date, today: date) -> tuple[int, int]:
    """``(days_in_month, days_elapsed)`` for the month as seen on ``today``."""
    total = days_in_month(period_month.year, period_month.month)
    if today < period_month:
        return total, 0
    if today > end_of_month(period_month):
        return total, total
    return total, today.day


def derive_status(ratio: float) -> BudgetStatus:
    if ratio <= 0.74:
        return "safe"
    if ratio <= 0.89:
        return "caution"
    if ratio <= 1.0:
        return "warning"
    return "over"


def compute_projection(
    method: ProjectionMethod,
    *,
    actual: Decimal,
    days_elapsed: int,
    days_in_month: int,
    include_carryover: bool = False,
    carryover_enabled: bool = False,
    carryover_amount: Decimal = ZERO,
) -> Decimal:
    safe_actual = max(actual, ZERO)
    carryover = carryover_amount if include_carryover and carryover_enabled else ZERO
    if method == "static" or days_elapsed <= 0:
        return safe_actual + carryover

    elapsed = Decimal(max(days_elapsed, 1))
    month_days = Decimal(days_in_month)
    if method == "linear":
        projected = safe_actual / elapsed * max(month_days, elapsed)
    else:
        weeks_elapsed = max(elapsed / 7, Decimal(1) / 7)
        projected_weeks = max(min(month_days / 7, Decimal(4)), weeks_elapsed)
        projected = safe_actual / weeks_elapsed * projected_weeks
    return max(safe_actual, projected + carryover)


def compute_snapshot(
    baseline: Baseline,
    items: Mapping[int, DraftItem],
    *,
    today: date,
    include_weekly: bool = True,
    method: ProjectionMethod = "linear",
    include_carryover: bool = False,
) -> ScenarioSnapshot:
    month_days, elapsed = days_info(baseline.period_month, today)
    categories: list[SnapshotCategory] = []
    planned_total = baseline_total = projected_total = actual_total = ZERO

    for category in baseline.categories:
        item = items.get(category.category_id)
        locked = bool(item and item.locked)
        delta_monthly = ZERO if locked or item is None else item.delta_monthly
        delta_weekly = ZERO if locked or item is None else sum_weekly_delta(item.delta_weekly)

        scenario_monthly = category.planned_monthly + delta_monthly
        scenario_weekly = category.planned_weekly + delta_weekly if include_weekly else ZERO
        baseline_planned = category.planned_monthly + (
            category.planned_weekly if include_weekly else ZERO
        )
        scenario_planned = max(ZERO, scenario_monthly + scenario_weekly)
        actual = baseline.actual_by_category.get(category.category_id, ZERO)
        projected = compute_projection(
            method,
            actual=actual,
            days_elapsed=elapsed,
            days_in_month=month_days,
            include_carryover=include_carryover,
            carryover_enabled=category.carryover_enabled,
            carryover_amount=max(ZERO, baseline_planned - actual),
        )
        ratio = float(projected / scenario_planned) if scenario_planned > 0 else 0.0

        categories.append(
            SnapshotCategory(
                category_id=category.category_id,
                name=category.name,
                type=category.type,
                baseline_planned=_money(baseline_planned),
                scenario_planned=_money(scenario_planned),
                baseline_monthly=_money(category.planned_monthly),
                scenario_monthly=_money(scenario_monthly),
                baseline_weekly=_money(category.planned_weekly),
                scenario_weekly=_money(scenario_weekly),
                delta_monthly=_money(delta_monthly),
                delta_weekly=_money(delta_weekly),
                actual=_money(actual),
                projected=_money(projected),
                ratio=round(ratio, 4),
                status=derive_status(ratio),
                locked=locked,
            )
        )
        planned_total += scenario_planned
        baseline_total += baseline_planned
        projected_total += projected
        actual_total += actual

    totals = SnapshotTotals(
        planned=_money(planned_total),
        planned_baseline=_money(baseline_total),
        actual=_money(actual_total),
        projected=_money(projected_total),
        remaining=_money(planned_total - actual_total),
        remaining_baseline=_money(baseline_total - actual_total),
        delta_planned=_money(planned_total - baseline_total),
        delta_projected=_money(projected_total - baseline_total),
    )
    return ScenarioSnapshot(
        period=baseline.period,
        method=method,
        include_weekly=include_weekly,
        include_carryover=include_carryover,
        days_elapsed=elapsed,
        days_in_month=month_days,
        categories=categories,
        totals=totals,
        risks=risks(categories),
    )


def risks(categories: list[SnapshotCategory]) -> list[SnapshotCategory]:
    flagged = [category for category in categories if category.ratio >= RISK_RATIO]
    return sorted(flagged, key=lambda category: category.ratio, reverse=True)


def plan_apply(
    baseline: Baseline, items: Mapping[int, DraftItem], *, include_weekly: bool
) -> ApplyPlan:
    """Budget rows to write so the live budgets match the scenario."""
    monthly_by_category: dict[int, MonthlyRow] = {}
    for row in baseline.monthly_rows:
        existing = monthly_by_category.get(row.category_id)
        if existing is None:
            monthly_by_category[row.category_id] = row
        else:
            monthly_by_category[row.category_id] = MonthlyRow(
                id=existing.id,
                category_id=row.category_id,
                planned=existing.planned + row.planned,
                carryover_enabled=existing.carryover_enabled or row.carryover_enabled,
                notes=existing.notes or row.notes,
            )

    monthly: list[MonthlyUpdate] = []
    for category in baseline.categories:
        item = items.get(category.category_id)
        delta = ZERO if item is None or item.locked else item.delta_monthly
        current = monthly_by_category.get(category.category_id)
        if abs(delta) <= EPSILON:
            continue
        before = current.planned if current else ZERO
        after = max(ZERO, before + delta)
        if abs(after - before) <= EPSILON:
            continue
        monthly.append(
            MonthlyUpdate(
                category_id=category.category_id,
                before=before,
                after=_money(after),
                carryover_enabled=current.carryover_enabled if current else category.carryover_enabled,
                notes=current.notes if current else None,
            )
        )

    weekly: list[WeeklyUpdate] = []
    if include_weekly:
        for category in baseline.categories:
            item = items.get(category.category_id)
            if item is None or item.locked:
                continue
            delta = sum_weekly_delta(item.delta_weekly)
            if abs(delta) <= EPSILON:
                continue
            rows = baseline.weekly_rows_by_category.get(category.category_id, [])
            if rows:
                weekly.extend(_spread_over_rows(rows, delta))
            elif baseline.weeks:
                per_week = _money(max(ZERO, delta / len(baseline.weeks)))
                if per_week <= EPSILON:
                    continue
                weekly.extend(
                    WeeklyUpdate(
                        category_id=category.category_id,
                        week_start=week,
                        before=ZERO,
                        after=per_week,
                        carryover_enabled=category.carryover_enabled,
                    )
                    for week in baseline.weeks
                )
    return ApplyPlan(monthly=monthly, weekly=weekly)


def _spread_over_rows(rows: list[WeeklyRow], delta: Decimal) -> list[WeeklyUpdate]:
    total = sum((row.planned for row in rows), ZERO)
    updates: list[WeeklyUpdate] = []
    for row in rows:
        weight = row.planned / total if total > 0 else Decimal(1) / len(rows)
        after = _money(max(ZERO, row.planned + delta * weight))
        if abs(after - row.planned) <= EPSILON:
            continue
        updates.append(
            WeeklyUpdate(
                category_id=row.category_id,
                week_start=row.week_start,
                before=row.planned,
                after=after,
                carryover_enabled=row.carryover_enabled,
                row_id=row.id,
                notes=row.notes,
            )
        )
    return updates
