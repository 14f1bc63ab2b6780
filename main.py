import logging
from functools import lru_cache
from typing import NoReturn, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Response

from config import get_settings
from confirm import generate_confirm_token, validate_confirm_token
from csv_utils import export_transactions, parse_amount
from database import init_db
from models import BudgetCategory, PaymentMethod, TransactionType
from scheduler import SchedulerManager
from schemas import (
    BudgetPercentages,
    CategoryAmounts,
    ContributionIn,
    GoalOut,
    IncomeIn,
    IngestExpenseIn,
    MonthlyAllocation,
    ResetIn,
    SavingsGoal,
    SavingsGoalDraft,
    SpendingAlert,
    SummaryOut,
    Transaction,
    TransactionDraft,
)
from services import (
    BudgetEngine,
    BudgetError,
    NotFoundError,
    SavingsGoalService,
    resolve_category,
)
from storage import StorageError, build_store

app = FastAPI(title="Budget Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@lru_cache(maxsize=1)
def get_budget_engine() -> BudgetEngine:
    settings = get_settings()
    if settings.storage == "sql":
        init_db()
    store = build_store(settings)
    needs, wants, investments = settings.default_split
    options = {
        "dedupe_alerts": settings.dedupe_alerts,
        "default_percentages": BudgetPercentages(
            needs=needs, wants=wants, investments=investments
        ),
    }
    try:
        return BudgetEngine.from_store(store, **options)
    except (StorageError, BudgetError):
        logging.exception("Stored snapshot could not be loaded; starting empty")
        return BudgetEngine(store=store, **options)


scheduler_manager = SchedulerManager(get_budget_engine)


@app.on_event("startup")
def startup_event():
    logging.info(f"Budget Ledger {APP_VERSION} starting")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _http_error(exc: BudgetError) -> NoReturn:
    status = 404 if isinstance(exc, NotFoundError) else 400
    raise HTTPException(status_code=status, detail=str(exc)) from exc


def _flag_persistence(response: Response, engine: BudgetEngine) -> None:
    if engine.persistence_warning:
        response.headers["X-Persistence-Warning"] = engine.persistence_warning


def _goal_out(engine: BudgetEngine, goal: SavingsGoal) -> GoalOut:
    return GoalOut(
        **goal.model_dump(),
        progress=SavingsGoalService.progress(goal),
        days_remaining=engine.goal_days_remaining(goal),
    )


@app.get("/api/summary", response_model=SummaryOut)
def summary(response: Response, engine: BudgetEngine = Depends(get_budget_engine)):
    out = engine.summary()
    _flag_persistence(response, engine)
    return out


@app.get("/api/transactions", response_model=list[Transaction])
def list_transactions(
    type: Optional[TransactionType] = None,
    category: Optional[BudgetCategory] = None,
    payment_method: Optional[PaymentMethod] = None,
    q: Optional[str] = None,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    return engine.transactions(
        type=type, category=category, payment_method=payment_method, query=q
    )


@app.post("/api/transactions", response_model=Transaction, status_code=201)
def create_transaction(
    data: TransactionDraft,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        txn = engine.add_transaction(data)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return txn


@app.put("/api/transactions/{transaction_id}", response_model=Transaction)
def edit_transaction(
    transaction_id: str,
    data: TransactionDraft,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        txn = engine.edit_transaction(transaction_id, data)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return txn


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: str, engine: BudgetEngine = Depends(get_budget_engine)
):
    engine.delete_transaction(transaction_id)
    response = Response(status_code=204)
    _flag_persistence(response, engine)
    return response


@app.get("/api/transactions/export.csv")
def export_transactions_endpoint(engine: BudgetEngine = Depends(get_budget_engine)):
    content = export_transactions(engine.transactions())
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.post("/api/income", response_model=Transaction, status_code=201)
def record_income(
    data: IncomeIn,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        txn = engine.record_income(data.amount, data.payment_method)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return txn


@app.post("/api/ingest", response_model=Transaction, status_code=201)
def ingest_expense(
    data: IngestExpenseIn,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        amount = parse_amount(data.amount)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        category = resolve_category(data.category)
        txn = engine.add_transaction(
            TransactionDraft(
                amount=amount,
                description=data.description,
                type=TransactionType.expense,
                category=category,
                payment_method=data.payment_method,
            )
        )
    except BudgetError as exc:
        _http_error(exc)
    logging.info(
        f"ingest: category={txn.category.value} amount={txn.amount:.2f} "
        f"raw_category={data.category!r}"
    )
    _flag_persistence(response, engine)
    return txn


@app.put("/api/percentages", response_model=BudgetPercentages)
def update_percentages(
    response: Response,
    # Checked by the engine: malformed and bad-sum splits both answer 400.
    data: dict = Body(...),
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        pct = engine.set_percentages(data)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return pct


@app.get("/api/budget", response_model=CategoryAmounts)
def current_budget(engine: BudgetEngine = Depends(get_budget_engine)):
    return engine.budget()


@app.get("/api/months", response_model=list[MonthlyAllocation])
def monthly_series(engine: BudgetEngine = Depends(get_budget_engine)):
    return engine.monthly_series()


@app.get("/api/months/current", response_model=MonthlyAllocation)
def current_month(engine: BudgetEngine = Depends(get_budget_engine)):
    return engine.current_month_allocation()


@app.get("/api/months/total", response_model=MonthlyAllocation)
def accumulated_totals(engine: BudgetEngine = Depends(get_budget_engine)):
    return engine.accumulated_totals()


@app.get("/api/alerts", response_model=list[SpendingAlert])
def list_alerts(engine: BudgetEngine = Depends(get_budget_engine)):
    return engine.list_alerts()


@app.delete("/api/alerts/{index}", status_code=204)
def dismiss_alert(index: int, engine: BudgetEngine = Depends(get_budget_engine)):
    engine.dismiss_alert(index)
    response = Response(status_code=204)
    _flag_persistence(response, engine)
    return response


@app.delete("/api/alerts", status_code=204)
def clear_alerts(engine: BudgetEngine = Depends(get_budget_engine)):
    engine.clear_alerts()
    response = Response(status_code=204)
    _flag_persistence(response, engine)
    return response


@app.get("/api/goals", response_model=list[GoalOut])
def list_goals(engine: BudgetEngine = Depends(get_budget_engine)):
    return [_goal_out(engine, goal) for goal in engine.list_goals()]


@app.post("/api/goals", response_model=GoalOut, status_code=201)
def create_goal(
    data: SavingsGoalDraft,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        goal = engine.create_goal(data)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return _goal_out(engine, goal)


@app.post("/api/goals/{goal_id}/contribute", response_model=GoalOut)
def contribute_to_goal(
    goal_id: str,
    data: ContributionIn,
    response: Response,
    engine: BudgetEngine = Depends(get_budget_engine),
):
    try:
        goal = engine.contribute_to_goal(goal_id, data.amount)
    except BudgetError as exc:
        _http_error(exc)
    _flag_persistence(response, engine)
    return _goal_out(engine, goal)


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(goal_id: str, engine: BudgetEngine = Depends(get_budget_engine)):
    engine.delete_goal(goal_id)
    response = Response(status_code=204)
    _flag_persistence(response, engine)
    return response


@app.post("/api/reset/token")
def reset_token():
    return {"token": generate_confirm_token()}


@app.post("/api/reset", status_code=204)
def reset(data: ResetIn, engine: BudgetEngine = Depends(get_budget_engine)):
    if not validate_confirm_token(data.token):
        raise HTTPException(status_code=400, detail="Invalid confirmation token")
    engine.reset()
    logging.info("Ledger reset to defaults")
    response = Response(status_code=204)
    _flag_persistence(response, engine)
    return response


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
