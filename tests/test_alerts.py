import pytest

from models import AlertType, BudgetCategory, SpendingStatus, TransactionType
from schemas import BudgetPercentages, TransactionDraft
from services import BudgetEngine, classify


def _engine(clock, **kwargs) -> BudgetEngine:
    engine = BudgetEngine(clock=clock, **kwargs)
    engine.set_percentages(BudgetPercentages(needs=50, wants=30, investments=20))
    engine.record_income(50_000)
    return engine


def _expense(amount: float, category=BudgetCategory.needs) -> TransactionDraft:
    return TransactionDraft(
        amount=amount,
        description="Rent",
        type=TransactionType.expense,
        category=category,
    )


@pytest.mark.parametrize(
    "spent,budgeted,expected",
    [
        (0, 100, SpendingStatus.normal),
        (79.99, 100, SpendingStatus.normal),
        (80, 100, SpendingStatus.warning),
        (99.99, 100, SpendingStatus.warning),
        (100, 100, SpendingStatus.danger),
        (150, 100, SpendingStatus.danger),
    ],
)
def test_classify_thresholds(spent, budgeted, expected) -> None:
    assert classify(spent, budgeted) is expected


def test_classify_without_budget_is_normal() -> None:
    assert classify(500, 0) is SpendingStatus.normal
    assert classify(0, 0) is SpendingStatus.normal


def test_warning_alert_at_eighty_four_percent(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(21_000))

    alerts = engine.list_alerts()
    assert len(alerts) == 1
    assert alerts[0].type == AlertType.warning
    assert alerts[0].category == BudgetCategory.needs
    assert alerts[0].message == "You're close to your needs budget!"


def test_danger_alert_at_one_hundred_four_percent(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(26_000))

    alerts = engine.list_alerts()
    assert [a.type for a in alerts] == [AlertType.danger]
    assert alerts[0].message == "You're exceeding your needs budget!"
    summary = {line.category: line for line in engine.spending_summary()}
    assert summary[BudgetCategory.needs].status == SpendingStatus.danger
    assert summary[BudgetCategory.wants].status == SpendingStatus.normal


def test_classification_includes_the_new_expense(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(10_000))
    assert engine.list_alerts() == []

    # 10k + 10k = 80% of the 25k needs budget
    engine.add_transaction(_expense(10_000))
    assert [a.type for a in engine.list_alerts()] == [AlertType.warning]


def test_income_and_normal_spend_raise_nothing(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(1_000, BudgetCategory.wants))
    engine.record_income(10_000)
    assert engine.list_alerts() == []


def test_repeated_breaches_append_by_default(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(21_000))
    engine.add_transaction(_expense(500))
    engine.add_transaction(_expense(5_000))

    assert [a.type for a in engine.list_alerts()] == [
        AlertType.warning,
        AlertType.warning,
        AlertType.danger,
    ]


def test_dedupe_suppresses_same_alert_for_category(clock) -> None:
    engine = _engine(clock, dedupe_alerts=True)
    engine.add_transaction(_expense(21_000))
    engine.add_transaction(_expense(500))
    engine.add_transaction(_expense(5_000))
    engine.add_transaction(_expense(100))

    assert [a.type for a in engine.list_alerts()] == [
        AlertType.warning,
        AlertType.danger,
    ]


def test_expense_without_income_does_not_alert(clock) -> None:
    engine = BudgetEngine(clock=clock)
    engine.add_transaction(_expense(5_000))
    assert engine.list_alerts() == []


def test_dismiss_and_clear_alerts(clock) -> None:
    engine = _engine(clock)
    engine.add_transaction(_expense(21_000))
    engine.add_transaction(_expense(5_000))

    engine.dismiss_alert(7)
    assert len(engine.list_alerts()) == 2

    engine.dismiss_alert(0)
    assert [a.type for a in engine.list_alerts()] == [AlertType.danger]

    engine.clear_alerts()
    assert engine.list_alerts() == []
