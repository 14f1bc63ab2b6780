from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class BudgetCategory(str, Enum):
    needs = "needs"
    wants = "wants"
    investments = "investments"


class PaymentMethod(str, Enum):
    cash = "cash"
    online = "online"


class SpendingStatus(str, Enum):
    normal = "normal"
    warning = "warning"
    danger = "danger"


class AlertType(str, Enum):
    warning = "warning"
    danger = "danger"


class GoalCategory(str, Enum):
    short_term = "short_term"
    long_term = "long_term"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class LedgerSnapshot(Base, TimestampMixin):
    __tablename__ = "ledger_snapshots"
    __table_args__ = (UniqueConstraint("key", name="uq_ledger_snapshot_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(120), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
