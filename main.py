import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from allocation import AllocationRow, auto_distribute, summarize
from cache import DigestCache, digest_cache_key
from config import get_settings
from confirmations import (
    BUDGET_SCENARIO,
    SALARY_SIMULATION,
    issue_apply_token,
    validate_apply_token,
)
from csv_utils import export_snapshot
from database import SessionLocal
from digest import DigestRegistry, DigestService, DigestState
from kv_store import KeyValueStore, SqlKeyValueStore
from models import Budget, CategoryType
from periods import local_today, parse_period, start_of_month
from rows import SqlRowQuery
from scheduler import SchedulerManager
from schemas import (
    AllocationRequest,
    AllocationRowIn,
    ApplyConfirmIn,
    ApplyResult,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    DigestStateOut,
    ProjectionMethod,
    SalaryDraft,
    SalarySimulationDuplicateIn,
    SalarySimulationIn,
    SalarySimulationOut,
    ScenarioIn,
    ScenarioItemsIn,
    ScenarioOut,
    ScenarioSnapshot,
    ScenarioUpdateIn,
    WeeklyBudgetIn,
)
from services import (
    ApplyFailedError,
    BudgetScenarioService,
    BudgetService,
    CategoryService,
    DraftService,
    NotFoundError,
    SalarySimulationService,
    get_current_user_id,
    salary_simulation_out,
    scenario_out,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="HematWoi Core")

INVALID_CONFIRMATION = "Konfirmasi penerapan tidak valid atau sudah kedaluwarsa"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_kv_store() -> KeyValueStore:
    return SqlKeyValueStore()


def get_digest_registry(request: Request) -> DigestRegistry:
    return request.app.state.digest_registry


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


def local_date() -> date:
    return local_today(datetime.now(timezone.utc), get_settings().timezone)


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    store = SqlKeyValueStore()
    cache = DigestCache(store, ttl_seconds=settings.digest_ttl_secs)
    digest_service = DigestService(
        SqlRowQuery(),
        timezone=settings.timezone,
        default_currency=settings.default_currency,
    )
    app.state.digest_registry = DigestRegistry(cache, digest_service.build)
    logger.info(f"digest_registry_ready: ttl={settings.digest_ttl_secs} timezone={settings.timezone}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def digest_state_out(state: DigestState) -> DigestStateOut:
    return DigestStateOut(
        data=state.data,
        loading=state.loading,
        stale=state.stale,
        error=str(state.error) if state.error else None,
    )


@app.get("/api/digest", response_model=DigestStateOut)
async def api_digest(
    user_id: int = Depends(current_user_id),
    registry: DigestRegistry = Depends(get_digest_registry),
):
    state = await registry.controller_for(user_id).load()
    return digest_state_out(state)


@app.post("/api/digest/refresh", response_model=DigestStateOut)
async def api_digest_refresh(
    user_id: int = Depends(current_user_id),
    registry: DigestRegistry = Depends(get_digest_registry),
):
    state = await registry.controller_for(user_id).refresh()
    return digest_state_out(state)


def _rows_from_request(rows: list[AllocationRowIn]) -> list[AllocationRow]:
    return [
        AllocationRow(
            category_id=row.category_id,
            category_name=row.category_name,
            amount=row.amount,
            percent=row.percent,
            locked=row.locked,
            notes=row.notes,
        )
        for row in rows
    ]


def _rows_to_response(rows: list[AllocationRow]) -> list[dict]:
    return [
        {
            "category_id": row.category_id,
            "category_name": row.category_name,
            "amount": row.amount,
            "percent": row.percent,
            "locked": row.locked,
            "notes": row.notes,
        }
        for row in rows
    ]


@app.post("/api/allocations/auto-distribute")
def api_auto_distribute(payload: AllocationRequest):
    rows = auto_distribute(
        payload.salary_amount,
        _rows_from_request(payload.rows),
        payload.planned_by_category,
    )
    return {
        "rows": _rows_to_response(rows),
        "summary": summarize(payload.salary_amount, rows, payload.planned_by_category),
    }


@app.post("/api/allocations/summary")
def api_allocation_summary(payload: AllocationRequest):
    rows = _rows_from_request(payload.rows)
    return summarize(payload.salary_amount, rows, payload.planned_by_category)


@app.get("/api/salary-simulations/draft")
def api_get_salary_draft(
    user_id: int = Depends(current_user_id),
    store: KeyValueStore = Depends(get_kv_store),
):
    result = DraftService(store, user_id).load()
    return {"draft": result.value.model_dump(mode="json") if result.value else None}


@app.put("/api/salary-simulations/draft")
def api_save_salary_draft(
    draft: SalaryDraft,
    user_id: int = Depends(current_user_id),
    store: KeyValueStore = Depends(get_kv_store),
):
    result = DraftService(store, user_id).save(draft)
    return {"saved": result.ok}


@app.delete("/api/salary-simulations/draft")
def api_clear_salary_draft(
    user_id: int = Depends(current_user_id),
    store: KeyValueStore = Depends(get_kv_store),
):
    result = DraftService(store, user_id).clear()
    return {"cleared": result.ok}


@app.get("/api/salary-simulations", response_model=list[SalarySimulationOut])
def api_list_salary_simulations(
    period: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        period_month = parse_period(period) if period else None
    except ValueError as exc:
        raise http_error(exc) from exc
    simulations = SalarySimulationService(db, user_id).list(period_month)
    return [salary_simulation_out(simulation) for simulation in simulations]


@app.post("/api/salary-simulations", response_model=SalarySimulationOut, status_code=201)
def api_create_salary_simulation(
    payload: SalarySimulationIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        simulation = SalarySimulationService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return salary_simulation_out(simulation)


@app.get("/api/salary-simulations/{simulation_id}", response_model=SalarySimulationOut)
def api_get_salary_simulation(
    simulation_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        simulation = SalarySimulationService(db, user_id).get(simulation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return salary_simulation_out(simulation)


@app.put("/api/salary-simulations/{simulation_id}", response_model=SalarySimulationOut)
def api_update_salary_simulation(
    simulation_id: int,
    payload: SalarySimulationIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        simulation = SalarySimulationService(db, user_id).update(simulation_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return salary_simulation_out(simulation)


@app.delete("/api/salary-simulations/{simulation_id}", status_code=204)
def api_delete_salary_simulation(
    simulation_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        SalarySimulationService(db, user_id).delete(simulation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post(
    "/api/salary-simulations/{simulation_id}/duplicate",
    response_model=SalarySimulationOut,
    status_code=201,
)
def api_duplicate_salary_simulation(
    simulation_id: int,
    payload: Optional[SalarySimulationDuplicateIn] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        simulation = SalarySimulationService(db, user_id).duplicate(
            simulation_id, payload, today=local_date()
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return salary_simulation_out(simulation)


@app.post("/api/salary-simulations/{simulation_id}/apply/confirm")
def api_confirm_salary_apply(
    simulation_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        SalarySimulationService(db, user_id).get(simulation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"confirmation_token": issue_apply_token(user_id, SALARY_SIMULATION, simulation_id)}


@app.post("/api/salary-simulations/{simulation_id}/apply", response_model=ApplyResult)
def api_apply_salary_simulation(
    simulation_id: int,
    payload: ApplyConfirmIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    registry: DigestRegistry = Depends(get_digest_registry),
):
    if not validate_apply_token(
        payload.confirmation_token, user_id, SALARY_SIMULATION, simulation_id
    ):
        raise HTTPException(status_code=400, detail=INVALID_CONFIRMATION)
    try:
        result = SalarySimulationService(db, user_id).apply(simulation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    except ApplyFailedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    registry.cache.invalidate(digest_cache_key(user_id))
    return result


@app.get("/api/budget-scenarios", response_model=list[ScenarioOut])
def api_list_budget_scenarios(
    period: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        period_month = parse_period(period) if period else None
    except ValueError as exc:
        raise http_error(exc) from exc
    return [scenario_out(s) for s in BudgetScenarioService(db, user_id).list(period_month)]


@app.post("/api/budget-scenarios", response_model=ScenarioOut, status_code=201)
def api_create_budget_scenario(
    payload: ScenarioIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        scenario = BudgetScenarioService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return scenario_out(scenario)


@app.get("/api/budget-scenarios/{scenario_id}", response_model=ScenarioOut)
def api_get_budget_scenario(
    scenario_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        scenario = BudgetScenarioService(db, user_id).get(scenario_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return scenario_out(scenario)


@app.patch("/api/budget-scenarios/{scenario_id}", response_model=ScenarioOut)
def api_update_budget_scenario(
    scenario_id: int,
    payload: ScenarioUpdateIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        scenario = BudgetScenarioService(db, user_id).update(scenario_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return scenario_out(scenario)


@app.delete("/api/budget-scenarios/{scenario_id}", status_code=204)
def api_delete_budget_scenario(
    scenario_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetScenarioService(db, user_id).delete(scenario_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.put("/api/budget-scenarios/{scenario_id}/items", response_model=ScenarioOut)
def api_save_budget_scenario_items(
    scenario_id: int,
    payload: ScenarioItemsIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        scenario = BudgetScenarioService(db, user_id).save_items(scenario_id, payload.items)
    except ValueError as exc:
        raise http_error(exc) from exc
    return scenario_out(scenario)


@app.get("/api/budget-scenarios/{scenario_id}/snapshot", response_model=ScenarioSnapshot)
def api_budget_scenario_snapshot(
    scenario_id: int,
    method: ProjectionMethod = "linear",
    include_carryover: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return BudgetScenarioService(db, user_id).snapshot(
            scenario_id,
            today=local_date(),
            method=method,
            include_carryover=include_carryover,
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budget-scenarios/{scenario_id}/export.csv")
def api_export_budget_scenario(
    scenario_id: int,
    method: ProjectionMethod = "linear",
    include_carryover: bool = False,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        snapshot = BudgetScenarioService(db, user_id).snapshot(
            scenario_id,
            today=local_date(),
            method=method,
            include_carryover=include_carryover,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    filename = f"simulasi-budget-{snapshot.period}.csv"
    return Response(
        content=export_snapshot(snapshot),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/budget-scenarios/{scenario_id}/apply/confirm")
def api_confirm_budget_scenario_apply(
    scenario_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetScenarioService(db, user_id).get(scenario_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"confirmation_token": issue_apply_token(user_id, BUDGET_SCENARIO, scenario_id)}


@app.post("/api/budget-scenarios/{scenario_id}/apply", response_model=ApplyResult)
def api_apply_budget_scenario(
    scenario_id: int,
    payload: ApplyConfirmIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    registry: DigestRegistry = Depends(get_digest_registry),
):
    if not validate_apply_token(
        payload.confirmation_token, user_id, BUDGET_SCENARIO, scenario_id
    ):
        raise HTTPException(status_code=400, detail=INVALID_CONFIRMATION)
    try:
        result = BudgetScenarioService(db, user_id).apply(scenario_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    except ApplyFailedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    registry.cache.invalidate(digest_cache_key(user_id))
    return result


def budget_out(budget: Budget) -> BudgetOut:
    return BudgetOut(
        id=budget.id,
        category_id=budget.category_id,
        name=budget.name or (budget.category.name if budget.category else None),
        planned=budget.planned,
        period_month=budget.period_month,
        carryover_enabled=budget.carryover_enabled,
        notes=budget.notes,
    )


@app.get("/api/budgets", response_model=list[BudgetOut])
def api_list_budgets(
    month: Optional[str] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        period_month = parse_period(month) if month else start_of_month(local_date())
    except ValueError as exc:
        raise http_error(exc) from exc
    return [budget_out(b) for b in BudgetService(db, user_id).list_monthly(period_month)]


@app.post("/api/budgets", response_model=BudgetOut)
def api_upsert_budget(
    payload: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).upsert_monthly(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.post("/api/weekly-budgets")
def api_upsert_weekly_budget(
    payload: WeeklyBudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        row = BudgetService(db, user_id).upsert_weekly(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": row.id,
        "category_id": row.category_id,
        "week_start": row.week_start.isoformat(),
        "planned": row.planned,
        "carryover_enabled": row.carryover_enabled,
    }


@app.get("/api/categories")
def api_list_categories(
    type: Optional[CategoryType] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return [
        {"id": c.id, "name": c.name, "type": c.type.value, "color": c.color}
        for c in CategoryService(db, user_id).list_all(type)
    ]


@app.post("/api/categories", status_code=201)
def api_create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
