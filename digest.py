"""Daily digest: aggregation of transaction, budget and account rows.

``build_digest`` is a pure reducer over rows that were already fetched.
``DigestService`` fetches those rows concurrently, and ``DigestController``
owns the refresh cycle: it shows whatever is cached straight away, lets only
the newest refresh commit, and falls back to the cache when a fetch fails.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone as dt_timezone
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Awaitable, Callable, Iterable, Optional

from cache import DigestCache, digest_cache_key
from periods import (
    add_days,
    add_months,
    clamp_day_divisor,
    local_today,
    month_key,
    start_of_month,
    start_of_week,
    to_date_string,
)
from rows import (
    AccountRecord,
    BudgetRecord,
    RowFilters,
    RowQuery,
    TransactionRecord,
    UpcomingRecord,
    normalize_account,
    normalize_budget,
    normalize_transaction,
    normalize_upcoming,
)
from schemas import (
    BalanceSummary,
    BudgetWarning,
    DailyDigest,
    MonthSummary,
    TodaySummary,
    TopCategory,
    UpcomingItem,
    WeekSummary,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED_KEY = "__uncategorized"
HISTORY_MONTHS = 3
UPCOMING_WINDOW_DAYS = 7
UPCOMING_LIMIT = 8
TOP_CATEGORY_LIMIT = 3
BUDGET_WARNING_THRESHOLD = Decimal("90")
SUBSCRIPTION_OPEN_STATUSES = ("due", "overdue")
NO_WEEKLY_EXPENSE_MESSAGE = "Belum ada pengeluaran minggu ini."

ZERO = Decimal("0")
SHARE_STEP = Decimal("0.0001")
MAX_CONTROLLERS = 256


@dataclass(frozen=True)
class DigestInputs:
    accounts: list[AccountRecord] = field(default_factory=list)
    transactions: list[TransactionRecord] = field(default_factory=list)
    budgets: list[BudgetRecord] = field(default_factory=list)
    upcoming: list[UpcomingRecord] = field(default_factory=list)


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    # One convention everywhere: nothing to compare against means 0.
    if denominator <= 0:
        return ZERO
    return numerator / denominator


def _pct(numerator: Decimal, denominator: Decimal) -> float:
    return round(float(safe_ratio(numerator, denominator) * 100), 2)


def _money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_rupiah(amount: Decimal) -> str:
    whole = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if whole < 0 else ""
    return f"{sign}Rp{abs(whole):,}".replace(",", ".")


def category_key(txn: TransactionRecord) -> object:
    return txn.category_id if txn.category_id is not None else UNCATEGORIZED_KEY


def compute_balance(accounts: Iterable[AccountRecord]) -> tuple[Decimal, int]:
    counted = [acc for acc in accounts if acc.counts_toward_balance]
    return sum((acc.balance for acc in counted), ZERO), len(counted)


def _sum(transactions: Iterable[TransactionRecord]) -> Decimal:
    return sum((txn.amount for txn in transactions), ZERO)


def weekly_buckets(expenses: Iterable[TransactionRecord]) -> dict[date, Decimal]:
    buckets: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for txn in expenses:
        buckets[start_of_week(txn.date)] += txn.amount
    return dict(buckets)


def historical_weekly_average(
    buckets: dict[date, Decimal], current_week: date
) -> Decimal:
    history = [total for week, total in buckets.items() if week != current_week]
    if not history:
        return ZERO
    return sum(history, ZERO) / len(history)


def top_categories(
    month_expenses: list[TransactionRecord],
    month_total: Decimal,
    *,
    limit: int = TOP_CATEGORY_LIMIT,
) -> list[TopCategory]:
    totals: dict[object, Decimal] = defaultdict(lambda: ZERO)
    names: dict[object, str] = {}
    ids: dict[object, Optional[int]] = {}
    for txn in month_expenses:
        key = category_key(txn)
        totals[key] += txn.amount
        names.setdefault(key, txn.category_name)
        ids.setdefault(key, txn.category_id)

    denominator = month_total if month_total > 0 else Decimal("1")
    ranked = sorted(totals.items(), key=lambda item: (-item[1], names[item[0]]))
    return [
        TopCategory(
            id=ids[key],
            name=names[key],
            total=_money(total),
            pct_of_mtd=(total / denominator).quantize(SHARE_STEP, rounding=ROUND_DOWN),
        )
        for key, total in ranked[:limit]
    ]


def budget_warnings(
    budgets: Iterable[BudgetRecord],
    spent_by_category: dict[object, Decimal],
) -> list[BudgetWarning]:
    warnings: list[tuple[Decimal, BudgetWarning]] = []
    for budget in budgets:
        if budget.planned <= 0:
            continue
        key = budget.category_id if budget.category_id is not None else UNCATEGORIZED_KEY
        actual = spent_by_category.get(key, ZERO)
        progress = actual * 100 / budget.planned
        if progress < BUDGET_WARNING_THRESHOLD:
            continue
        warnings.append(
            (
                progress,
                BudgetWarning(
                    id=budget.id,
                    category_id=budget.category_id,
                    name=budget.name,
                    planned=_money(budget.planned),
                    actual=_money(actual),
                    progress=round(float(progress), 2),
                ),
            )
        )
    warnings.sort(key=lambda item: item[0], reverse=True)
    return [warning for _, warning in warnings]


def build_insight(
    expenses: list[TransactionRecord], current_week: date, today: date
) -> str:
    this_week = [txn for txn in expenses if current_week <= txn.date <= today]
    if not this_week:
        return NO_WEEKLY_EXPENSE_MESSAGE

    totals: dict[object, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[object, int] = defaultdict(int)
    names: dict[object, str] = {}
    for txn in this_week:
        key = category_key(txn)
        totals[key] += txn.amount
        counts[key] += 1
        names.setdefault(key, txn.category_name)
    top_key, top_total = min(totals.items(), key=lambda item: (-item[1], names[item[0]]))

    message = (
        f"Minggu ini kamu paling banyak belanja di {names[top_key]}: "
        f"{counts[top_key]} transaksi senilai {format_rupiah(top_total)}."
    )

    category_history = weekly_buckets(
        txn for txn in expenses if category_key(txn) == top_key
    )
    average = historical_weekly_average(category_history, current_week)
    if average <= 0:
        return message
    diff_pct = (top_total - average) * 100 / average
    if diff_pct > 0:
        return f"{message} Itu {diff_pct:.0f}% di atas rata-rata mingguanmu."
    if diff_pct < 0:
        return f"{message} Itu {abs(diff_pct):.0f}% di bawah rata-rata mingguanmu."
    return f"{message} Itu sama dengan rata-rata mingguanmu."


def select_upcoming(
    items: Iterable[UpcomingRecord],
    today: date,
    *,
    window_days: int = UPCOMING_WINDOW_DAYS,
    limit: int = UPCOMING_LIMIT,
) -> list[UpcomingItem]:
    horizon = add_days(today, window_days)
    selected: list[UpcomingRecord] = []
    for item in items:
        if not (today <= item.due_date <= horizon):
            continue
        if item.kind == "subscription" and item.status not in SUBSCRIPTION_OPEN_STATUSES:
            continue
        if item.kind == "debt" and item.status == "paid":
            continue
        selected.append(item)
    selected.sort(key=lambda item: (item.due_date, item.name))
    return [
        UpcomingItem(
            id=item.id,
            kind=item.kind,
            name=item.name,
            due_date=item.due_date,
            amount=_money(item.amount),
            currency=item.currency,
        )
        for item in selected[:limit]
    ]


def build_digest(
    inputs: DigestInputs, *, today: date, generated_at: datetime
) -> DailyDigest:
    month_start = start_of_month(today)
    current_week = start_of_week(today)
    transactions = [txn for txn in inputs.transactions if txn.date <= today]
    expenses = [txn for txn in transactions if txn.type == "expense"]

    balance_total, account_count = compute_balance(inputs.accounts)
    today_income = _sum(t for t in transactions if t.type == "income" and t.date == today)
    today_expense = _sum(e for e in expenses if e.date == today)
    change = today_income - today_expense
    direction = "up" if change > 0 else "down" if change < 0 else "flat"

    month_expenses = [txn for txn in expenses if txn.date >= month_start]
    month_total = _sum(month_expenses)
    days_elapsed = clamp_day_divisor(today.day)
    average_daily = month_total / days_elapsed

    buckets = weekly_buckets(expenses)
    week_total = buckets.get(current_week, ZERO)
    weekly_average = historical_weekly_average(buckets, current_week)

    spent_by_category: dict[object, Decimal] = defaultdict(lambda: ZERO)
    for txn in month_expenses:
        spent_by_category[category_key(txn)] += txn.amount

    return DailyDigest(
        balance=BalanceSummary(
            total=_money(balance_total),
            change=_money(change),
            direction=direction,
            accounts=account_count,
        ),
        today=TodaySummary(
            total=_money(today_expense),
            income=_money(today_income),
            average_daily=_money(average_daily),
            vs_average_pct=_pct(today_expense, average_daily),
        ),
        week=WeekSummary(
            week_start=current_week,
            total=_money(week_total),
            weekly_average=_money(weekly_average),
            vs_average_pct=_pct(week_total, weekly_average),
        ),
        month=MonthSummary(
            month_start=month_start,
            total=_money(month_total),
            average_daily=_money(average_daily),
            days_elapsed=days_elapsed,
        ),
        top_categories=top_categories(month_expenses, month_total),
        budget_warnings=budget_warnings(inputs.budgets, spent_by_category),
        upcoming=select_upcoming(inputs.upcoming, today),
        insight=build_insight(expenses, current_week, today),
        today_key=to_date_string(today),
        month_key=month_key(today),
        generated_at=generated_at,
    )


def history_start(today: date) -> date:
    return start_of_week(add_months(today, -HISTORY_MONTHS))


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


class DigestService:
    def __init__(
        self,
        rows: RowQuery,
        *,
        timezone: str,
        default_currency: str = "IDR",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.rows = rows
        self.timezone = timezone
        self.default_currency = default_currency
        self.clock = clock

    async def fetch_inputs(self, user_id: int, today: date) -> DigestInputs:
        month_start = start_of_month(today)
        accounts, transactions, budgets, upcoming = await asyncio.gather(
            self.rows.query_rows("accounts", RowFilters(user_id=user_id)),
            self.rows.query_rows(
                "transactions",
                RowFilters(user_id=user_id, date_from=history_start(today), date_to=today),
            ),
            self.rows.query_rows(
                "budgets",
                RowFilters(user_id=user_id, date_from=month_start, date_to=month_start),
            ),
            self._fetch_upcoming(user_id, today),
        )
        return DigestInputs(
            accounts=[normalize_account(row) for row in accounts],
            transactions=[
                txn
                for txn in (normalize_transaction(row) for row in transactions)
                if txn is not None
            ],
            budgets=[normalize_budget(row) for row in budgets],
            upcoming=upcoming,
        )

    async def _fetch_upcoming(self, user_id: int, today: date) -> list[UpcomingRecord]:
        window_end = add_days(today, UPCOMING_WINDOW_DAYS)
        charges, debts = await asyncio.gather(
            self.rows.query_rows(
                "subscription_charges",
                RowFilters(
                    user_id=user_id,
                    date_from=today,
                    date_to=window_end,
                    status=SUBSCRIPTION_OPEN_STATUSES,
                ),
            ),
            self.rows.query_rows(
                "debts",
                RowFilters(
                    user_id=user_id,
                    date_from=today,
                    date_to=window_end,
                    status=("ongoing", "overdue"),
                ),
            ),
        )
        items = [
            normalize_upcoming(row, "subscription", self.default_currency)
            for row in charges
        ] + [normalize_upcoming(row, "debt", self.default_currency) for row in debts]
        return [item for item in items if item is not None]

    async def build(self, user_id: int) -> DailyDigest:
        now = self.clock()
        today = local_today(now, self.timezone)
        inputs = await self.fetch_inputs(user_id, today)
        return build_digest(inputs, today=today, generated_at=now)


DigestFetcher = Callable[[int], Awaitable[DailyDigest]]


@dataclass
class DigestState:
    data: DailyDigest = field(default_factory=DailyDigest)
    loading: bool = False
    stale: bool = False
    error: Optional[Exception] = None


class DigestController:
    """Refresh cycle for one user's digest.

    Every refresh takes a new generation number; only a fetch whose
    generation is still the newest may write to the state or the cache.
    """

    def __init__(
        self, user_id: Optional[int], fetch: DigestFetcher, cache: DigestCache
    ) -> None:
        self.user_id = user_id
        self.fetch = fetch
        self.cache = cache
        self.key = digest_cache_key(user_id)
        self.state = DigestState()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    async def load(self) -> DigestState:
        fresh = self.cache.get_fresh(self.key)
        if fresh is not None:
            self.state.data = fresh
            self.state.stale = False
            self.state.error = None
            return self.state
        return await self.refresh()

    async def refresh(self) -> DigestState:
        self._generation += 1
        generation = self._generation
        if self.user_id is None:
            self.state = DigestState()
            return self.state

        cached = self.cache.peek(self.key)
        if cached is not None:
            self.state.data = cached.data
            self.state.stale = True
        self.state.loading = True
        await self._run(generation)
        return self.state

    async def _run(self, generation: int) -> None:
        try:
            data = await self.fetch(self.user_id)
        except Exception as exc:
            if generation != self._generation:
                logger.info(
                    f"digest_refresh: user={self.user_id} generation={generation} status=superseded_error"
                )
                return
            fallback = self.cache.peek(self.key)
            logger.warning(
                f"digest_refresh: user={self.user_id} generation={generation} "
                f"status=failed cached={fallback is not None} error={exc}"
            )
            self.state.data = fallback.data if fallback is not None else DailyDigest()
            self.state.stale = fallback is not None
            self.state.error = exc
            self.state.loading = False
            return

        if generation != self._generation:
            logger.info(
                f"digest_refresh: user={self.user_id} generation={generation} status=discarded"
            )
            return
        self.cache.put(self.key, data)
        self.state.data = data
        self.state.stale = False
        self.state.error = None
        self.state.loading = False
        logger.info(f"digest_refresh: user={self.user_id} generation={generation} status=ok")


class DigestRegistry:
    """One controller per user, all sharing the cache built at startup.

    Only the most recently used controllers are kept; an evicted user gets a
    fresh controller that starts from the shared cache.
    """

    def __init__(
        self,
        cache: DigestCache,
        fetch: DigestFetcher,
        max_controllers: int = MAX_CONTROLLERS,
    ) -> None:
        self.cache = cache
        self.fetch = fetch
        self.max_controllers = max_controllers
        self._controllers: OrderedDict[Optional[int], DigestController] = OrderedDict()

    def controller_for(self, user_id: Optional[int]) -> DigestController:
        controller = self._controllers.get(user_id)
        if controller is None:
            controller = DigestController(user_id, self.fetch, self.cache)
            self._controllers[user_id] = controller
            while len(self._controllers) > self.max_controllers:
                evicted, _ = self._controllers.popitem(last=False)
                logger.debug(f"digest_registry_evict: user={evicted}")
        else:
            self._controllers.move_to_end(user_id)
        return controller
