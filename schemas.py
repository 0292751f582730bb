from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Direction = Literal["up", "down", "flat"]


class BalanceSummary(BaseModel):
    total: Decimal = Decimal("0")
    change: Decimal = Decimal("0")
    direction: Direction = "flat"
    accounts: int = 0


class TodaySummary(BaseModel):
    total: Decimal = Decimal("0")
    income: Decimal = Decimal("0")
    average_daily: Decimal = Decimal("0")
    vs_average_pct: float = 0.0


class WeekSummary(BaseModel):
    week_start: Optional[date] = None
    total: Decimal = Decimal("0")
    weekly_average: Decimal = Decimal("0")
    vs_average_pct: float = 0.0


class MonthSummary(BaseModel):
    month_start: Optional[date] = None
    total: Decimal = Decimal("0")
    average_daily: Decimal = Decimal("0")
    days_elapsed: int = 1


class TopCategory(BaseModel):
    id: Optional[int] = None
    name: str
    total: Decimal
    pct_of_mtd: Decimal


class BudgetWarning(BaseModel):
    id: Optional[int] = None
    category_id: Optional[int] = None
    name: str
    planned: Decimal
    actual: Decimal
    progress: float


class UpcomingItem(BaseModel):
    id: Optional[int] = None
    kind: Literal["subscription", "debt"]
    name: str
    due_date: date
    amount: Decimal
    currency: str


class DailyDigest(BaseModel):
    balance: BalanceSummary = Field(default_factory=BalanceSummary)
    today: TodaySummary = Field(default_factory=TodaySummary)
    week: WeekSummary = Field(default_factory=WeekSummary)
    month: MonthSummary = Field(default_factory=MonthSummary)
    top_categories: list[TopCategory] = Field(default_factory=list)
    budget_warnings: list[BudgetWarning] = Field(default_factory=list)
    upcoming: list[UpcomingItem] = Field(default_factory=list)
    insight: str = ""
    today_key: str = ""
    month_key: str = ""
    generated_at: Optional[datetime] = None


class DigestStateOut(BaseModel):
    data: DailyDigest
    loading: bool
    stale: bool
    error: Optional[str] = None


class AllocationRowIn(BaseModel):
    category_id: int
    category_name: str = ""
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    locked: bool = False
    notes: Optional[str] = Field(default=None, max_length=500)


class AllocationRequest(BaseModel):
    salary_amount: Decimal = Field(..., ge=0)
    rows: list[AllocationRowIn] = Field(default_factory=list)
    planned_by_category: dict[int, Decimal] = Field(default_factory=dict)


class OverBudgetCategory(BaseModel):
    category_id: int
    name: str
    amount: Decimal
    planned: Decimal
    delta: Decimal


class TopAllocation(BaseModel):
    category_id: int
    name: str
    percent: Decimal


class AllocationSummary(BaseModel):
    total_allocation: Decimal
    remaining_salary: Decimal
    allocation_ratio: float
    total_percent: float
    over_allocated: bool
    over_budget_categories: list[OverBudgetCategory] = Field(default_factory=list)
    top_category: Optional[TopAllocation] = None


class SalarySimulationItemIn(BaseModel):
    category_id: int
    allocation_amount: Decimal = Field(..., ge=0)
    allocation_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class SalarySimulationIn(BaseModel):
    title: Optional[str] = Field(default=None, max_length=160)
    salary_amount: Decimal
    period: str = Field(..., description="YYYY-MM")
    notes: Optional[str] = Field(default=None, max_length=2000)
    items: list[SalarySimulationItemIn] = Field(default_factory=list)


class SalarySimulationDuplicateIn(BaseModel):
    title: Optional[str] = Field(default=None, max_length=160)
    salary_amount: Optional[Decimal] = None
    period: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class SalarySimulationItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    category_name: str
    allocation_amount: Decimal
    allocation_percent: Optional[Decimal] = None
    notes: Optional[str] = None


class SalarySimulationOut(BaseModel):
    id: int
    title: Optional[str]
    salary_amount: Decimal
    period_month: date
    notes: Optional[str]
    total_allocations: Decimal
    remaining: Decimal
    item_count: int
    created_at: datetime
    updated_at: datetime
    items: list[SalarySimulationItemOut] = Field(default_factory=list)


class ApplyResult(BaseModel):
    monthly_updated: int = 0
    weekly_updated: int = 0


class ApplyConfirmIn(BaseModel):
    confirmation_token: str = Field(..., min_length=1)


class SalaryDraft(BaseModel):
    salary_amount: Decimal = Decimal("0")
    period_month: date
    title: str = ""
    notes: str = ""
    allocations: list[AllocationRowIn] = Field(default_factory=list)


class BudgetIn(BaseModel):
    period: str = Field(..., description="YYYY-MM")
    category_id: Optional[int] = None
    name: Optional[str] = Field(default=None, max_length=120)
    planned: Decimal = Field(..., ge=0)
    carryover_enabled: bool = False
    notes: Optional[str] = Field(default=None, max_length=500)


class WeeklyBudgetIn(BaseModel):
    category_id: int
    week_start: date
    planned: Decimal = Field(..., ge=0)
    carryover_enabled: bool = False
    notes: Optional[str] = Field(default=None, max_length=500)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: Literal["income", "expense"]
    color: Optional[str] = Field(default=None, max_length=9)


class WeeklyDeltaIn(BaseModel):
    mon: Decimal = Decimal("0")
    tue: Decimal = Decimal("0")
    wed: Decimal = Decimal("0")
    thu: Decimal = Decimal("0")
    fri: Decimal = Decimal("0")
    sat: Decimal = Decimal("0")
    sun: Decimal = Decimal("0")


class ScenarioItemIn(BaseModel):
    category_id: int
    delta_monthly: Decimal = Decimal("0")
    delta_weekly: WeeklyDeltaIn = Field(default_factory=WeeklyDeltaIn)
    locked: bool = False


class ScenarioIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=160)
    period: str = Field(..., description="YYYY-MM")
    include_weekly: bool = True
    source_scenario_id: Optional[int] = None


class ScenarioUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    include_weekly: Optional[bool] = None


class ScenarioItemsIn(BaseModel):
    items: list[ScenarioItemIn] = Field(default_factory=list)


class ScenarioItemOut(BaseModel):
    category_id: int
    delta_monthly: Decimal
    delta_weekly: dict[str, Decimal]
    locked: bool


class ScenarioOut(BaseModel):
    id: int
    name: str
    period: str
    include_weekly: bool
    created_at: datetime
    updated_at: datetime
    items: list[ScenarioItemOut] = Field(default_factory=list)


ProjectionMethod = Literal["linear", "recent", "static"]
BudgetStatus = Literal["safe", "caution", "warning", "over"]


class SnapshotCategory(BaseModel):
    category_id: int
    name: str
    type: Optional[str] = None
    baseline_planned: Decimal
    scenario_planned: Decimal
    baseline_monthly: Decimal
    scenario_monthly: Decimal
    baseline_weekly: Decimal
    scenario_weekly: Decimal
    delta_monthly: Decimal
    delta_weekly: Decimal
    actual: Decimal
    projected: Decimal
    ratio: float
    status: BudgetStatus
    locked: bool


class SnapshotTotals(BaseModel):
    planned: Decimal = Decimal("0")
    planned_baseline: Decimal = Decimal("0")
    actual: Decimal = Decimal("0")
    projected: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    remaining_baseline: Decimal = Decimal("0")
    delta_planned: Decimal = Decimal("0")
    delta_projected: Decimal = Decimal("0")


class ScenarioSnapshot(BaseModel):
    period: str
    method: ProjectionMethod
    include_weekly: bool
    include_carryover: bool
    days_elapsed: int
    days_in_month: int
    categories: list[SnapshotCategory] = Field(default_factory=list)
    totals: SnapshotTotals = Field(default_factory=SnapshotTotals)
    risks: list[SnapshotCategory] = Field(default_factory=list)


class BudgetOut(BaseModel):
    id: int
    category_id: Optional[int]
    name: Optional[str]
    planned: Decimal
    period_month: date
    carryover_enabled: bool
    notes: Optional[str] = None
