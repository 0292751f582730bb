"""Salary allocation: split one salary across expense categories.

Rows are immutable; every edit returns a new list so callers can keep the
previous state around for undo or comparison.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from schemas import AllocationSummary, OverBudgetCategory, TopAllocation

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class AllocationRow:
    category_id: int
    category_name: str
    amount: Decimal = ZERO
    percent: Decimal = ZERO
    locked: bool = False
    notes: Optional[str] = None


def round2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def round_rupiah(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, salary: Decimal) -> Decimal:
    if salary <= 0:
        return ZERO
    return round2(amount / salary * HUNDRED)


def clamp_percent(value: Decimal) -> Decimal:
    return max(ZERO, min(HUNDRED, value))


def set_amount(
    rows: list[AllocationRow], category_id: int, amount: Decimal, salary: Decimal
) -> list[AllocationRow]:
    amount = max(ZERO, amount)
    return [
        replace(row, amount=amount, percent=percent_of(amount, salary))
        if row.category_id == category_id
        else row
        for row in rows
    ]


def set_percent(
    rows: list[AllocationRow], category_id: int, percent: Decimal, salary: Decimal
) -> list[AllocationRow]:
    percent = clamp_percent(percent)
    amount = round_rupiah(salary * percent / HUNDRED) if salary > 0 else ZERO
    return [
        replace(row, amount=amount, percent=percent)
        if row.category_id == category_id
        else row
        for row in rows
    ]


def toggle_lock(rows: list[AllocationRow], category_id: int) -> list[AllocationRow]:
    return [
        replace(row, locked=not row.locked) if row.category_id == category_id else row
        for row in rows
    ]


def add_categories(
    rows: list[AllocationRow], categories: Iterable[tuple[int, str]]
) -> list[AllocationRow]:
    """Append a zero row for every category not already allocated."""
    present = {row.category_id for row in rows}
    added: list[AllocationRow] = []
    for category_id, name in categories:
        if category_id in present:
            continue
        present.add(category_id)
        added.append(AllocationRow(category_id=category_id, category_name=name))
    return rows + added


def remove_row(rows: list[AllocationRow], category_id: int) -> list[AllocationRow]:
    return [row for row in rows if row.category_id != category_id]


def with_salary(rows: list[AllocationRow], salary: Decimal) -> list[AllocationRow]:
    return [replace(row, percent=percent_of(row.amount, salary)) for row in rows]


def auto_distribute(
    salary: Decimal,
    rows: list[AllocationRow],
    planned_by_category: Optional[Mapping[int, Decimal]] = None,
) -> list[AllocationRow]:
    """Spread whatever the locked rows leave over the unlocked rows.

    Shares follow each category's planned budget when any unlocked category
    has one, otherwise the split is even. The last unlocked row absorbs the
    rounding remainder, so locked plus unlocked always sums to the salary
    when the locked rows fit inside it.
    """
    planned_by_category = planned_by_category or {}
    unlocked = [row for row in rows if not row.locked]
    if not unlocked:
        return list(rows)

    locked_total = sum((row.amount for row in rows if row.locked), ZERO)
    remaining = salary - locked_total

    amounts: dict[int, Decimal] = {}
    if remaining <= 0:
        for row in unlocked:
            amounts[row.category_id] = ZERO
    else:
        weights = [max(ZERO, planned_by_category.get(row.category_id, ZERO)) for row in unlocked]
        total_weight = sum(weights, ZERO)
        assigned = ZERO
        last_index = len(unlocked) - 1
        for index, row in enumerate(unlocked):
            if index == last_index:
                share = remaining - assigned
            elif total_weight > 0:
                share = min(round_rupiah(weights[index] / total_weight * remaining), remaining - assigned)
            else:
                share = (remaining / len(unlocked)).quantize(Decimal("1"), rounding=ROUND_DOWN)
            amounts[row.category_id] = share
            assigned += share

    return [
        replace(row, amount=amounts[row.category_id], percent=percent_of(amounts[row.category_id], salary))
        if row.category_id in amounts
        else row
        for row in rows
    ]


def summarize(
    salary: Decimal,
    rows: list[AllocationRow],
    planned_by_category: Optional[Mapping[int, Decimal]] = None,
) -> AllocationSummary:
    planned_by_category = planned_by_category or {}
    total = sum((row.amount for row in rows), ZERO)
    remaining = salary - total
    ratio = float(total / salary) if salary > 0 else 0.0

    over_budget: list[OverBudgetCategory] = []
    for row in rows:
        planned = planned_by_category.get(row.category_id, ZERO)
        if planned > 0 and row.amount > planned:
            over_budget.append(
                OverBudgetCategory(
                    category_id=row.category_id,
                    name=row.category_name,
                    amount=row.amount,
                    planned=planned,
                    delta=row.amount - planned,
                )
            )

    top: Optional[TopAllocation] = None
    if rows and salary > 0:
        best = max(rows, key=lambda row: row.percent)
        top = TopAllocation(category_id=best.category_id, name=best.category_name, percent=best.percent)

    return AllocationSummary(
        total_allocation=total,
        remaining_salary=remaining,
        allocation_ratio=round(ratio, 4),
        total_percent=round(ratio * 100, 2),
        over_allocated=remaining < 0,
        over_budget_categories=over_budget,
        top_category=top,
    )
