from datetime import date, datetime, timezone
from typing import Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    field_validator,
)
from pydantic.alias_generators import to_camel

from models import (
    AlertType,
    BudgetCategory,
    GoalCategory,
    PaymentMethod,
    SpendingStatus,
    TransactionType,
)

# Bools and numeric strings are rejected rather than coerced.
Number = Union[StrictInt, StrictFloat]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransactionDraft(CamelModel):
    amount: Number
    description: str
    type: TransactionType
    category: BudgetCategory = BudgetCategory.needs
    payment_method: PaymentMethod = PaymentMethod.online


class Transaction(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    amount: float = Field(..., gt=0)
    category: BudgetCategory
    description: str
    date: datetime
    type: TransactionType
    payment_method: PaymentMethod = PaymentMethod.online

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value: datetime) -> datetime:
        return _as_utc(value)


class BudgetPercentages(CamelModel):
    needs: Number
    wants: Number
    investments: Number


class CategoryAmounts(CamelModel):
    needs: float = 0.0
    wants: float = 0.0
    investments: float = 0.0

    def get(self, category: BudgetCategory) -> float:
        return getattr(self, category.value)


class MonthlyAllocation(CategoryAmounts):
    month: str


class SpendingAlert(CamelModel):
    model_config = ConfigDict(frozen=True)

    type: AlertType
    message: str
    category: BudgetCategory


class SavingsGoalDraft(CamelModel):
    name: str
    target_amount: Number
    deadline: date
    category: GoalCategory = GoalCategory.short_term


class SavingsGoal(CamelModel):
    id: str
    name: str
    target_amount: float = Field(..., gt=0)
    current_amount: float = Field(0.0, ge=0)
    deadline: date
    category: GoalCategory


class EngineSnapshot(CamelModel):
    """Unit of persistence; keys unknown to this model (monthlyIncome) are dropped."""

    model_config = ConfigDict(extra="ignore")

    transactions: list[Transaction] = Field(default_factory=list)
    percentages: BudgetPercentages
    savings_goals: list[SavingsGoal] = Field(default_factory=list)
    alerts: list[SpendingAlert] = Field(default_factory=list)
    # Absent in snapshots written before buckets were stored; rebuilt on load.
    monthly_allocations: Optional[list[MonthlyAllocation]] = None


class IncomeIn(CamelModel):
    amount: Number
    payment_method: PaymentMethod = PaymentMethod.online


class IngestExpenseIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    amount: str = Field(..., min_length=1, max_length=40)
    description: str = Field(..., min_length=1, max_length=200)
    category: Optional[str] = Field(default=None, max_length=100)
    payment_method: PaymentMethod = PaymentMethod.online


class ContributionIn(CamelModel):
    amount: Number


class ResetIn(CamelModel):
    token: str


class SpendingLine(CamelModel):
    category: BudgetCategory
    budget: float
    spent: float
    status: SpendingStatus


class SummaryOut(CamelModel):
    month: str
    income_baseline: float
    percentages: BudgetPercentages
    budget: CategoryAmounts
    daily_limit: float
    spending: list[SpendingLine]
    alert_count: int
    persistence_warning: Optional[str] = None


class GoalOut(SavingsGoal):
    progress: float
    days_remaining: int
