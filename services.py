from __future__ import annotations

import functools
import logging
import math
import threading
import uuid
from bisect import insort
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Iterable, Optional, Protocol, Union

from pydantic import ValidationError as SchemaValidationError
from rapidfuzz.distance import Levenshtein

from models import (
    AlertType,
    BudgetCategory,
    PaymentMethod,
    SpendingStatus,
    TransactionType,
)
from periods import days_in_month, month_key, parse_month_key, resolve_month, utc_now
from schemas import (
    BudgetPercentages,
    CategoryAmounts,
    EngineSnapshot,
    MonthlyAllocation,
    SavingsGoal,
    SavingsGoalDraft,
    SpendingAlert,
    SpendingLine,
    SummaryOut,
    Transaction,
    TransactionDraft,
)
from storage import SnapshotStore, StorageError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

WARNING_THRESHOLD_PCT = 80
DANGER_THRESHOLD_PCT = 100
TOTAL_LABEL = "Total"


class BudgetError(ValueError):
    pass


class ValidationError(BudgetError):
    pass


class NotFoundError(ValidationError):
    pass


class InvalidSplitError(BudgetError):
    pass


class IngestCategoryAmbiguous(ValidationError):
    pass


class Accruable(Protocol):
    """What budget math may read from a transaction. Payment method is not part of it."""

    amount: float
    category: BudgetCategory
    type: TransactionType
    date: datetime


def signed_amount(txn: Accruable) -> float:
    if txn.type == TransactionType.income:
        return txn.amount
    return -txn.amount


def income_baseline(transactions: Iterable[Accruable], now: datetime) -> float:
    period = resolve_month(now=now)
    return sum(
        t.amount
        for t in transactions
        if t.type == TransactionType.income and period.contains(t.date)
    )


def month_expense_total(
    transactions: Iterable[Accruable], category: BudgetCategory, now: datetime
) -> float:
    period = resolve_month(now=now)
    return sum(
        t.amount
        for t in transactions
        if t.type == TransactionType.expense
        and t.category == category
        and period.contains(t.date)
    )


def compute_budget(baseline: float, pct: BudgetPercentages) -> CategoryAmounts:
    return CategoryAmounts(
        needs=baseline * pct.needs / 100,
        wants=baseline * pct.wants / 100,
        investments=baseline * pct.investments / 100,
    )


def validate_percentages(pct: BudgetPercentages) -> bool:
    values = (pct.needs, pct.wants, pct.investments)
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if isinstance(value, float) and not value.is_integer():
            return False
        if not 0 <= value <= 100:
            return False
    return sum(values) == 100


def daily_limit(needs_budget: float, today: Optional[datetime] = None) -> float:
    return needs_budget / days_in_month(today or utc_now())


def classify(spent: float, budgeted: float) -> SpendingStatus:
    if budgeted <= 0:
        # No allocation yet: nothing to measure against.
        return SpendingStatus.normal
    pct = spent / budgeted * 100
    if pct < WARNING_THRESHOLD_PCT:
        return SpendingStatus.normal
    if pct < DANGER_THRESHOLD_PCT:
        return SpendingStatus.warning
    return SpendingStatus.danger


def _coerce(model, data, what: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except SchemaValidationError as exc:
        error = exc.errors()[0]
        field = str(error["loc"][0]) if error["loc"] else what
        raise ValidationError(f"Invalid {what}: {field}: {error['msg']}") from exc


class LedgerService:
    def __init__(
        self,
        transactions: Optional[Iterable[Transaction]] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.clock = clock
        self._items: list[Transaction] = list(transactions or [])

    @staticmethod
    def _validate(draft: Union[TransactionDraft, dict]) -> TransactionDraft:
        draft = _coerce(TransactionDraft, draft, "transaction")
        if not draft.amount > 0 or math.isinf(draft.amount):
            raise ValidationError("Amount must be positive")
        if not draft.description.strip():
            raise ValidationError("Description cannot be empty")
        return draft

    def add(
        self, draft: Union[TransactionDraft, dict], *, at: Optional[datetime] = None
    ) -> Transaction:
        draft = self._validate(draft)
        txn = Transaction(
            id=str(uuid.uuid4()),
            amount=draft.amount,
            category=draft.category,
            description=draft.description.strip(),
            date=at or self.clock(),
            type=draft.type,
            payment_method=draft.payment_method,
        )
        self._items.insert(0, txn)
        return txn

    def find(self, transaction_id: str) -> Optional[Transaction]:
        for txn in self._items:
            if txn.id == transaction_id:
                return txn
        return None

    def get(self, transaction_id: str) -> Transaction:
        txn = self.find(transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        return txn

    def edit(
        self, transaction_id: str, draft: Union[TransactionDraft, dict]
    ) -> Transaction:
        draft = self._validate(draft)
        for idx, txn in enumerate(self._items):
            if txn.id != transaction_id:
                continue
            updated = Transaction(
                id=txn.id,
                amount=draft.amount,
                category=draft.category,
                description=draft.description.strip(),
                date=txn.date,
                type=draft.type,
                payment_method=draft.payment_method,
            )
            self._items[idx] = updated
            return updated
        raise NotFoundError("Transaction not found")

    def remove(self, transaction_id: str) -> None:
        self._items = [t for t in self._items if t.id != transaction_id]

    def all(self) -> list[Transaction]:
        return list(self._items)

    def filter(
        self,
        *,
        type: Optional[TransactionType] = None,
        category: Optional[BudgetCategory] = None,
        payment_method: Optional[PaymentMethod] = None,
        query: Optional[str] = None,
    ) -> list[Transaction]:
        needle = (query or "").strip().lower()
        return [
            t
            for t in self._items
            if (type is None or t.type == type)
            and (category is None or t.category == category)
            and (payment_method is None or t.payment_method == payment_method)
            and (not needle or needle in t.description.lower())
        ]


class Periodizer:
    """Calendar-month allocation buckets.

    A bucket is created (opened) the first time its month is touched, either by
    a transaction dated in it or by an explicit rollover. Buckets for months
    before the month of "now" are closed and never change again; they are
    saved with the snapshot and come back through ``restore``. ``backfill``
    rebuilds them from the ledger for snapshots written without buckets.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, MonthlyAllocation] = {}
        self._keys: list[str] = []

    def __contains__(self, key: str) -> bool:
        return key in self._buckets

    def _open(self, key: str) -> MonthlyAllocation:
        bucket = self._buckets.get(key)
        if bucket is None:
            parse_month_key(key)
            bucket = MonthlyAllocation(month=key)
            self._buckets[key] = bucket
            insort(self._keys, key)
            logger.info(f"month_opened: month={key}")
        return bucket

    def _accumulate(self, txn: Accruable, sign: int) -> None:
        bucket = self._open(month_key(txn.date))
        field = txn.category.value
        setattr(bucket, field, getattr(bucket, field) + sign * signed_amount(txn))

    @staticmethod
    def is_closed(key: str, now: datetime) -> bool:
        return key < month_key(now)

    def accrue(self, key: str) -> MonthlyAllocation:
        return self._open(key).model_copy()

    def current_month_allocation(self, now: datetime) -> MonthlyAllocation:
        return self.accrue(month_key(now))

    def apply(self, txn: Accruable, now: datetime) -> None:
        key = month_key(txn.date)
        if self.is_closed(key, now) and key in self._buckets:
            logger.info(f"month_closed_skip: month={key} op=apply")
            return
        self._accumulate(txn, 1)

    def reverse(self, txn: Accruable, now: datetime) -> None:
        key = month_key(txn.date)
        if self.is_closed(key, now):
            logger.info(f"month_closed_skip: month={key} op=reverse")
            return
        self._accumulate(txn, -1)

    def backfill(self, transactions: Iterable[Accruable]) -> None:
        self._buckets.clear()
        self._keys.clear()
        for txn in transactions:
            self._accumulate(txn, 1)

    def restore(self, buckets: Iterable[MonthlyAllocation]) -> None:
        self._buckets.clear()
        self._keys.clear()
        for bucket in buckets:
            parse_month_key(bucket.month)
            if bucket.month not in self._buckets:
                insort(self._keys, bucket.month)
            self._buckets[bucket.month] = bucket.model_copy()

    def monthly_series(self) -> list[MonthlyAllocation]:
        return [self._buckets[key].model_copy() for key in self._keys]

    def accumulated_totals(self) -> MonthlyAllocation:
        total = MonthlyAllocation(month=TOTAL_LABEL)
        for key in self._keys:
            bucket = self._buckets[key]
            total.needs += bucket.needs
            total.wants += bucket.wants
            total.investments += bucket.investments
        return total


class AlertService:
    def __init__(
        self, alerts: Optional[Iterable[SpendingAlert]] = None, dedupe: bool = False
    ) -> None:
        self._alerts: list[SpendingAlert] = list(alerts or [])
        self.dedupe = dedupe

    @staticmethod
    def message_for(status: SpendingStatus, category: BudgetCategory) -> str:
        verb = "close to" if status == SpendingStatus.warning else "exceeding"
        return f"You're {verb} your {category.value} budget!"

    def evaluate(
        self, category: BudgetCategory, spent: float, budgeted: float
    ) -> Optional[SpendingAlert]:
        status = classify(spent, budgeted)
        if status == SpendingStatus.normal:
            return None
        alert = SpendingAlert(
            type=AlertType(status.value),
            message=self.message_for(status, category),
            category=category,
        )
        if self.dedupe:
            latest = next(
                (a for a in reversed(self._alerts) if a.category == category), None
            )
            if latest is not None and latest.type == alert.type:
                logger.info(
                    f"alert_suppressed: category={category.value} type={alert.type.value}"
                )
                return None
        self._alerts.append(alert)
        logger.info(
            f"alert_raised: category={category.value} type={alert.type.value} "
            f"spent={spent:.2f} budget={budgeted:.2f}"
        )
        return alert

    def all(self) -> list[SpendingAlert]:
        return list(self._alerts)

    def dismiss(self, index: int) -> None:
        if 0 <= index < len(self._alerts):
            del self._alerts[index]

    def clear(self) -> None:
        self._alerts.clear()


class SavingsGoalService:
    def __init__(self, goals: Optional[Iterable[SavingsGoal]] = None) -> None:
        self._goals: list[SavingsGoal] = list(goals or [])

    def create(self, draft: Union[SavingsGoalDraft, dict]) -> SavingsGoal:
        draft = _coerce(SavingsGoalDraft, draft, "savings goal")
        if not draft.name.strip():
            raise ValidationError("Goal name cannot be empty")
        if not draft.target_amount > 0 or math.isinf(draft.target_amount):
            raise ValidationError("Target amount must be positive")
        goal = SavingsGoal(
            id=str(uuid.uuid4()),
            name=draft.name.strip(),
            target_amount=draft.target_amount,
            current_amount=0.0,
            deadline=draft.deadline,
            category=draft.category,
        )
        self._goals.append(goal)
        return goal

    def get(self, goal_id: str) -> SavingsGoal:
        for goal in self._goals:
            if goal.id == goal_id:
                return goal
        raise NotFoundError("Savings goal not found")

    def contribute(self, goal_id: str, amount: float) -> SavingsGoal:
        if not amount > 0 or math.isinf(amount):
            raise ValidationError("Contribution must be positive")
        goal = self.get(goal_id)
        goal.current_amount += amount
        return goal

    def delete(self, goal_id: str) -> None:
        self._goals = [g for g in self._goals if g.id != goal_id]

    def all(self) -> list[SavingsGoal]:
        return list(self._goals)

    @staticmethod
    def progress(goal: SavingsGoal) -> float:
        return min(goal.current_amount / goal.target_amount, 1.0)

    @staticmethod
    def days_remaining(goal: SavingsGoal, now: datetime) -> int:
        deadline = datetime.combine(goal.deadline, time.min, tzinfo=timezone.utc)
        return math.ceil((deadline - now) / timedelta(days=1))


def resolve_category(raw: Optional[str]) -> BudgetCategory:
    """Match free-form category text to a budget category.

    Empty input files under needs. Otherwise an exact, case-insensitive match
    wins, then the unique category within one edit (``need`` -> needs).
    """
    name = (raw or "").strip().lower()
    if not name:
        return BudgetCategory.needs
    for category in BudgetCategory:
        if category.value == name:
            return category

    best_distance: Optional[int] = None
    best: list[BudgetCategory] = []
    for category in BudgetCategory:
        dist = int(Levenshtein.distance(name, category.value))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is None or best_distance > 1:
        raise ValidationError(f"Unknown category '{raw}'")
    if len(best) > 1:
        options = ", ".join(sorted(c.value for c in best))
        raise IngestCategoryAmbiguous(
            f"Category '{raw}' is ambiguous; matches: {options}"
        )
    return best[0]


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class BudgetEngine:
    """In-memory ledger state plus everything derived from it.

    Every mutation runs in the same order: roll the calendar over, commit to
    the ledger, update the month buckets, re-read the budget, classify, then
    hand the snapshot to the store. Period reads roll over first as well.
    Store failures leave the in-memory state untouched and are kept in
    ``persistence_warning`` until the next successful save.
    """

    def __init__(
        self,
        snapshot: Optional[EngineSnapshot] = None,
        *,
        store: Optional[SnapshotStore] = None,
        clock: Clock = utc_now,
        dedupe_alerts: bool = False,
        default_percentages: Optional[BudgetPercentages] = None,
    ) -> None:
        self._lock = threading.RLock()
        self.store = store
        self.clock = clock
        self.dedupe_alerts = dedupe_alerts
        self.default_percentages = default_percentages or BudgetPercentages(
            needs=40, wants=30, investments=30
        )
        if not validate_percentages(self.default_percentages):
            raise InvalidSplitError("Default percentages must sum to 100")
        self.persistence_warning: Optional[str] = None
        self._rollover_pending = False
        self._hydrate(snapshot)

    @classmethod
    def from_store(cls, store: SnapshotStore, **kwargs) -> "BudgetEngine":
        raw = store.load()
        snapshot = None
        if raw is not None:
            try:
                snapshot = EngineSnapshot.model_validate(raw)
            except SchemaValidationError as exc:
                raise StorageError("Stored snapshot is malformed") from exc
        return cls(snapshot, store=store, **kwargs)

    def _hydrate(self, snapshot: Optional[EngineSnapshot]) -> None:
        if snapshot is not None and not validate_percentages(snapshot.percentages):
            raise InvalidSplitError("Stored percentages must sum to 100")
        self.ledger = LedgerService(
            snapshot.transactions if snapshot else None, clock=self.clock
        )
        self.percentages = (
            snapshot.percentages if snapshot else self.default_percentages
        ).model_copy()
        self.goals = SavingsGoalService(
            [g.model_copy() for g in snapshot.savings_goals] if snapshot else None
        )
        self.alerts = AlertService(
            snapshot.alerts if snapshot else None, dedupe=self.dedupe_alerts
        )
        self.periodizer = Periodizer()
        if snapshot is not None and snapshot.monthly_allocations is not None:
            try:
                self.periodizer.restore(snapshot.monthly_allocations)
            except ValueError as exc:
                raise StorageError("Stored month buckets are malformed") from exc
        else:
            self.periodizer.backfill(self.ledger.all())
        now_key = month_key(self.clock())
        # A month opened on load is saved by the first call that reads it.
        self._rollover_pending = snapshot is not None and now_key not in self.periodizer
        self.periodizer.accrue(now_key)
        logger.info(
            f"engine_hydrated: transactions={len(self.ledger.all())} "
            f"months={len(self.periodizer.monthly_series())}"
        )

    def _persist(self) -> None:
        if self.store is None:
            self._rollover_pending = False
            return
        try:
            self.store.save(self._snapshot().model_dump(mode="json", by_alias=True))
        except StorageError as exc:
            self.persistence_warning = str(exc)
            logger.warning(f"snapshot_save_failed: error={exc}")
            return
        self.persistence_warning = None
        self._rollover_pending = False

    def _rollover(self, now: datetime, *, save: bool = True) -> None:
        key = month_key(now)
        if key not in self.periodizer:
            self.periodizer.accrue(key)
            self._rollover_pending = True
        if save and self._rollover_pending:
            self._persist()

    def _budget(self, now: datetime) -> CategoryAmounts:
        return compute_budget(income_baseline(self.ledger.all(), now), self.percentages)

    def _snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            transactions=self.ledger.all(),
            percentages=self.percentages.model_copy(),
            savings_goals=[g.model_copy() for g in self.goals.all()],
            alerts=self.alerts.all(),
            monthly_allocations=self.periodizer.monthly_series(),
        )

    def _spending_lines(
        self, budget: CategoryAmounts, now: datetime
    ) -> list[SpendingLine]:
        lines = []
        for category in BudgetCategory:
            spent = month_expense_total(self.ledger.all(), category, now)
            allotted = budget.get(category)
            lines.append(
                SpendingLine(
                    category=category,
                    budget=allotted,
                    spent=spent,
                    status=classify(spent, allotted),
                )
            )
        return lines

    # Ledger

    @_synchronized
    def add_transaction(self, draft: Union[TransactionDraft, dict]) -> Transaction:
        now = self.clock()
        self._rollover(now, save=False)
        txn = self.ledger.add(draft, at=now)
        self.periodizer.apply(txn, now)
        if txn.type == TransactionType.expense:
            # Classify against the budget as it stands after the ledger write.
            budget = self._budget(now).get(txn.category)
            spent = month_expense_total(self.ledger.all(), txn.category, now)
            self.alerts.evaluate(txn.category, spent, budget)
        self._persist()
        return txn

    def record_income(
        self, amount: float, payment_method: PaymentMethod = PaymentMethod.online
    ) -> Transaction:
        return self.add_transaction(
            TransactionDraft(
                amount=amount,
                description=f"Monthly Income ({payment_method.value})",
                type=TransactionType.income,
                category=BudgetCategory.needs,
                payment_method=payment_method,
            )
        )

    @_synchronized
    def edit_transaction(
        self, transaction_id: str, draft: Union[TransactionDraft, dict]
    ) -> Transaction:
        now = self.clock()
        self._rollover(now, save=False)
        previous = self.ledger.get(transaction_id)
        updated = self.ledger.edit(transaction_id, draft)
        self.periodizer.reverse(previous, now)
        self.periodizer.apply(updated, now)
        self._persist()
        return updated

    @_synchronized
    def delete_transaction(self, transaction_id: str) -> None:
        now = self.clock()
        previous = self.ledger.find(transaction_id)
        if previous is None:
            self._rollover(now)
            return
        self._rollover(now, save=False)
        self.ledger.remove(transaction_id)
        self.periodizer.reverse(previous, now)
        self._persist()

    @_synchronized
    def get_transaction(self, transaction_id: str) -> Transaction:
        return self.ledger.get(transaction_id)

    @_synchronized
    def transactions(self, **filters) -> list[Transaction]:
        if any(v is not None for v in filters.values()):
            return self.ledger.filter(**filters)
        return self.ledger.all()

    # Allocation

    @_synchronized
    def income_baseline(self) -> float:
        now = self.clock()
        self._rollover(now)
        return income_baseline(self.ledger.all(), now)

    @_synchronized
    def budget(self) -> CategoryAmounts:
        now = self.clock()
        self._rollover(now)
        return self._budget(now)

    @_synchronized
    def daily_limit(self) -> float:
        now = self.clock()
        self._rollover(now)
        return daily_limit(self._budget(now).needs, now)

    @_synchronized
    def set_percentages(
        self, pct: Union[BudgetPercentages, dict]
    ) -> BudgetPercentages:
        try:
            pct = _coerce(BudgetPercentages, pct, "percentages")
        except ValidationError as exc:
            raise InvalidSplitError(str(exc)) from exc
        if not validate_percentages(pct):
            raise InvalidSplitError(
                "Percentages must be whole numbers between 0 and 100 summing to 100"
            )
        self._rollover(self.clock(), save=False)
        self.percentages = pct.model_copy()
        logger.info(
            f"percentages_updated: needs={pct.needs} wants={pct.wants} "
            f"investments={pct.investments}"
        )
        self._persist()
        return self.percentages.model_copy()

    @_synchronized
    def spending_summary(self) -> list[SpendingLine]:
        now = self.clock()
        self._rollover(now)
        return self._spending_lines(self._budget(now), now)

    @_synchronized
    def summary(self) -> SummaryOut:
        """Everything the dashboard header shows, read under one lock."""
        now = self.clock()
        self._rollover(now)
        budget = self._budget(now)
        return SummaryOut(
            month=month_key(now),
            income_baseline=income_baseline(self.ledger.all(), now),
            percentages=self.percentages.model_copy(),
            budget=budget,
            daily_limit=daily_limit(budget.needs, now),
            spending=self._spending_lines(budget, now),
            alert_count=len(self.alerts.all()),
            persistence_warning=self.persistence_warning,
        )

    # Periods

    @_synchronized
    def current_month_allocation(self) -> MonthlyAllocation:
        now = self.clock()
        self._rollover(now)
        return self.periodizer.current_month_allocation(now)

    @_synchronized
    def accrue(self, key: str) -> MonthlyAllocation:
        self._rollover(self.clock())
        opened = key not in self.periodizer
        try:
            bucket = self.periodizer.accrue(key)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if opened:
            self._persist()
        return bucket

    @_synchronized
    def monthly_series(self) -> list[MonthlyAllocation]:
        self._rollover(self.clock())
        return self.periodizer.monthly_series()

    @_synchronized
    def accumulated_totals(self) -> MonthlyAllocation:
        self._rollover(self.clock())
        return self.periodizer.accumulated_totals()

    # Alerts

    @_synchronized
    def list_alerts(self) -> list[SpendingAlert]:
        return self.alerts.all()

    @_synchronized
    def dismiss_alert(self, index: int) -> None:
        self._rollover(self.clock(), save=False)
        self.alerts.dismiss(index)
        self._persist()

    @_synchronized
    def clear_alerts(self) -> None:
        self._rollover(self.clock(), save=False)
        self.alerts.clear()
        self._persist()

    # Savings goals

    @_synchronized
    def create_goal(self, draft: Union[SavingsGoalDraft, dict]) -> SavingsGoal:
        self._rollover(self.clock(), save=False)
        goal = self.goals.create(draft)
        self._persist()
        return goal.model_copy()

    @_synchronized
    def contribute_to_goal(self, goal_id: str, amount: float) -> SavingsGoal:
        self._rollover(self.clock(), save=False)
        goal = self.goals.contribute(goal_id, amount)
        self._persist()
        return goal.model_copy()

    @_synchronized
    def delete_goal(self, goal_id: str) -> None:
        self._rollover(self.clock(), save=False)
        self.goals.delete(goal_id)
        self._persist()

    @_synchronized
    def list_goals(self) -> list[SavingsGoal]:
        return [g.model_copy() for g in self.goals.all()]

    @_synchronized
    def goal_days_remaining(self, goal: SavingsGoal) -> int:
        return SavingsGoalService.days_remaining(goal, self.clock())

    # Snapshot

    @_synchronized
    def snapshot(self) -> EngineSnapshot:
        return self._snapshot()

    @_synchronized
    def reset(self) -> None:
        if self.store is not None:
            try:
                self.store.clear()
                self.persistence_warning = None
            except StorageError as exc:
                self.persistence_warning = str(exc)
                logger.warning(f"snapshot_clear_failed: error={exc}")
        self._hydrate(None)
        logger.info("engine_reset")
