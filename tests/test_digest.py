from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import permutations

from digest import (
    NO_WEEKLY_EXPENSE_MESSAGE,
    DigestInputs,
    build_digest,
    build_insight,
    compute_balance,
    format_rupiah,
    select_upcoming,
    top_categories,
)
from rows import AccountRecord, BudgetRecord, TransactionRecord, UpcomingRecord

TODAY = date(2024, 3, 13)  # Wednesday
GENERATED_AT = datetime(2024, 3, 13, 2, 0, tzinfo=timezone.utc)


def _txn(
    txn_id: int,
    amount: int,
    day: date,
    category_id=None,
    name: str = "Tanpa kategori",
    type: str = "expense",
) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        type=type,
        amount=Decimal(amount),
        date=day,
        category_id=category_id,
        category_name=name,
    )


def _account(acc_id, type, balance, archived=False, active=True) -> AccountRecord:
    return AccountRecord(
        id=acc_id, type=type, balance=Decimal(balance), archived=archived, active=active
    )


def test_yesterday_expense_leaves_today_flat() -> None:
    inputs = DigestInputs(
        accounts=[_account(1, "cash", 200_000)],
        transactions=[_txn(1, 50_000, TODAY - timedelta(days=1), 1, "Makan")],
    )

    digest = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT)

    assert digest.balance.total == Decimal("200000")
    assert digest.balance.change == Decimal("0")
    assert digest.balance.direction == "flat"
    assert digest.today.total == Decimal("0")
    assert digest.today_key == "2024-03-13"
    assert digest.month_key == "2024-03"


def test_today_change_direction() -> None:
    inputs = DigestInputs(
        transactions=[
            _txn(1, 100_000, TODAY, type="income"),
            _txn(2, 30_000, TODAY, 1, "Makan"),
            _txn(3, 999_999, TODAY, type="transfer"),
        ]
    )
    digest = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT)
    assert digest.balance.change == Decimal("70000")
    assert digest.balance.direction == "up"

    inputs = DigestInputs(transactions=[_txn(1, 30_000, TODAY, 1, "Makan")])
    digest = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT)
    assert digest.balance.direction == "down"


def test_balance_ignores_order_and_skips_archived_or_inactive() -> None:
    accounts = [
        _account(1, "cash", 100),
        _account(2, None, 50),
        _account(3, "bank", 1_000, archived=True),
        _account(4, "ewallet", 2_000, active=False),
        _account(5, "other", 5_000),
    ]
    for ordering in permutations(accounts):
        total, count = compute_balance(ordering)
        assert total == Decimal("150")
        assert count == 2


def test_month_and_week_averages() -> None:
    inputs = DigestInputs(
        transactions=[
            _txn(1, 30_000, date(2024, 2, 27), 1, "Makan"),
            _txn(2, 70_000, date(2024, 3, 5), 1, "Makan"),
            _txn(3, 20_000, date(2024, 3, 11), 1, "Makan"),
            _txn(4, 10_000, TODAY, 2, "Transport"),
            _txn(5, 5_000, TODAY + timedelta(days=1), 2, "Transport"),
        ]
    )

    digest = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT)

    assert digest.month.total == Decimal("100000")
    assert digest.month.days_elapsed == 13
    assert digest.month.average_daily == Decimal("7692.31")
    assert digest.today.vs_average_pct == 130.0
    assert digest.week.week_start == date(2024, 3, 11)
    assert digest.week.total == Decimal("30000")
    assert digest.week.weekly_average == Decimal("50000")
    assert digest.week.vs_average_pct == 60.0


def test_no_history_means_zero_comparison() -> None:
    inputs = DigestInputs(transactions=[_txn(1, 10_000, TODAY, 1, "Makan")])
    digest = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT)
    assert digest.week.weekly_average == Decimal("0")
    assert digest.week.vs_average_pct == 0.0


def test_top_categories_share_of_month() -> None:
    month = [
        _txn(1, 40_000, TODAY, 1, "Makan"),
        _txn(2, 30_000, TODAY, 2, "Transport"),
        _txn(3, 20_000, TODAY, None),
        _txn(4, 5_000, TODAY, 4, "Hiburan"),
        _txn(5, 5_000, TODAY, 4, "Hiburan"),
    ]
    total = sum((t.amount for t in month), Decimal("0"))

    top = top_categories(month, total)

    assert [c.name for c in top] == ["Makan", "Transport", "Tanpa kategori"]
    assert top[2].id is None
    assert sum(c.total for c in top) <= total
    assert sum(c.pct_of_mtd for c in top) <= 1
    assert top[0].pct_of_mtd == Decimal("0.4")


def test_top_category_shares_never_exceed_whole_month() -> None:
    for total in (3, 7, 160, 999, 100_003):
        for first in range(1, total, max(1, total // 37)):
            month = [
                _txn(1, first, TODAY, 1, "Makan"),
                _txn(2, total - first, TODAY, 2, "Transport"),
            ]
            top = top_categories(month, Decimal(total), limit=10)
            assert sum(c.pct_of_mtd for c in top) <= 1

    uneven = [_txn(i, 1 + i * 13, TODAY, i, f"K{i}") for i in range(1, 8)]
    month_total = sum((t.amount for t in uneven), Decimal("0"))
    assert sum(c.pct_of_mtd for c in top_categories(uneven, month_total, limit=10)) <= 1

    pair = top_categories(
        [_txn(1, 1, TODAY, 1, "Makan"), _txn(2, 159, TODAY, 2, "Transport")],
        Decimal("160"),
    )
    assert [c.pct_of_mtd for c in pair] == [Decimal("0.9937"), Decimal("0.0062")]


def test_top_categories_with_no_spend() -> None:
    assert top_categories([], Decimal("0")) == []


def test_budget_warning_threshold_is_ninety_percent() -> None:
    inputs = DigestInputs(
        transactions=[
            _txn(1, 89_990, TODAY, 1, "Makan"),
            _txn(2, 90_000, TODAY, 2, "Transport"),
            _txn(3, 120_000, TODAY, 3, "Hiburan"),
            _txn(4, 10_000, TODAY, 4, "Kopi"),
        ],
        budgets=[
            BudgetRecord(1, 1, "Makan", Decimal("100000"), date(2024, 3, 1)),
            BudgetRecord(2, 2, "Transport", Decimal("100000"), date(2024, 3, 1)),
            BudgetRecord(3, 3, "Hiburan", Decimal("100000"), date(2024, 3, 1)),
            BudgetRecord(4, 4, "Kopi", Decimal("0"), date(2024, 3, 1)),
        ],
    )

    warnings = build_digest(inputs, today=TODAY, generated_at=GENERATED_AT).budget_warnings

    assert [w.name for w in warnings] == ["Hiburan", "Transport"]
    assert warnings[0].progress == 120.0
    assert warnings[1].progress == 90.0
    assert warnings[1].actual == Decimal("90000")


def test_insight_compares_with_category_history() -> None:
    expenses = [
        _txn(1, 20_000, date(2024, 2, 27), 1, "Makan"),
        _txn(2, 20_000, date(2024, 3, 5), 1, "Makan"),
        _txn(3, 20_000, date(2024, 3, 11), 1, "Makan"),
        _txn(4, 10_000, TODAY, 1, "Makan"),
        _txn(5, 5_000, TODAY, 2, "Transport"),
    ]
    insight = build_insight(expenses, date(2024, 3, 11), TODAY)
    assert insight == (
        "Minggu ini kamu paling banyak belanja di Makan: 2 transaksi senilai Rp30.000."
        " Itu 50% di atas rata-rata mingguanmu."
    )


def test_insight_below_average_and_without_history() -> None:
    below = [
        _txn(1, 60_000, date(2024, 3, 5), 1, "Makan"),
        _txn(2, 30_000, TODAY, 1, "Makan"),
    ]
    assert build_insight(below, date(2024, 3, 11), TODAY).endswith(
        "Itu 50% di bawah rata-rata mingguanmu."
    )

    fresh = [_txn(1, 30_000, TODAY, 1, "Makan")]
    assert build_insight(fresh, date(2024, 3, 11), TODAY) == (
        "Minggu ini kamu paling banyak belanja di Makan: 1 transaksi senilai Rp30.000."
    )


def test_insight_without_weekly_expense() -> None:
    old = [_txn(1, 60_000, date(2024, 3, 5), 1, "Makan")]
    assert build_insight(old, date(2024, 3, 11), TODAY) == NO_WEEKLY_EXPENSE_MESSAGE
    assert build_insight([], date(2024, 3, 11), TODAY) == NO_WEEKLY_EXPENSE_MESSAGE


def test_format_rupiah() -> None:
    assert format_rupiah(Decimal("1500000")) == "Rp1.500.000"
    assert format_rupiah(Decimal("999.6")) == "Rp1.000"
    assert format_rupiah(Decimal("-2500")) == "-Rp2.500"


def _upcoming(item_id, kind, offset, status, name="Netflix") -> UpcomingRecord:
    return UpcomingRecord(
        id=item_id,
        kind=kind,
        name=name,
        due_date=TODAY + timedelta(days=offset),
        amount=Decimal("50000"),
        currency="IDR",
        status=status,
    )


def test_upcoming_window_and_status() -> None:
    items = [
        _upcoming(1, "debt", 7, "ongoing", "Cicilan"),
        _upcoming(2, "subscription", 0, "due"),
        _upcoming(3, "subscription", 3, "paid"),
        _upcoming(4, "subscription", 2, "overdue", "Spotify"),
        _upcoming(5, "debt", 8, "ongoing"),
        _upcoming(6, "debt", -1, "ongoing"),
        _upcoming(7, "debt", 1, "paid"),
    ]

    selected = select_upcoming(items, TODAY)

    assert [item.id for item in selected] == [2, 4, 1]
    assert selected[0].kind == "subscription"


def test_upcoming_is_capped_at_eight() -> None:
    items = [_upcoming(i, "subscription", 1, "due", f"Langganan {i}") for i in range(12)]
    assert len(select_upcoming(items, TODAY)) == 8
