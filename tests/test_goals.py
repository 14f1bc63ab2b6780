from datetime import date, datetime, timezone

import pytest

from models import GoalCategory
from schemas import SavingsGoalDraft
from services import BudgetEngine, NotFoundError, SavingsGoalService, ValidationError


def _draft(**overrides) -> SavingsGoalDraft:
    data = {
        "name": "Emergency fund",
        "target_amount": 100_000,
        "deadline": date(2024, 12, 31),
        "category": GoalCategory.long_term,
    }
    data.update(overrides)
    return SavingsGoalDraft(**data)


def test_create_starts_at_zero() -> None:
    goals = SavingsGoalService()
    goal = goals.create(_draft())
    assert goal.current_amount == 0
    assert goal.id
    assert goals.all() == [goal]


@pytest.mark.parametrize(
    "overrides", [{"name": "  "}, {"target_amount": 0}, {"target_amount": -100}]
)
def test_create_rejects_invalid_goal(overrides) -> None:
    with pytest.raises(ValidationError):
        SavingsGoalService().create(_draft(**overrides))


def test_contributions_accumulate_and_progress_caps_at_one() -> None:
    goals = SavingsGoalService()
    goal = goals.create(_draft(target_amount=1_000))

    goals.contribute(goal.id, 250)
    assert SavingsGoalService.progress(goals.get(goal.id)) == 0.25

    goals.contribute(goal.id, 1_000)
    updated = goals.get(goal.id)
    assert updated.current_amount == 1_250
    assert SavingsGoalService.progress(updated) == 1.0


def test_contribute_validation() -> None:
    goals = SavingsGoalService()
    goal = goals.create(_draft())

    with pytest.raises(ValidationError):
        goals.contribute(goal.id, 0)
    with pytest.raises(ValidationError):
        goals.contribute(goal.id, -10)
    with pytest.raises(NotFoundError):
        goals.contribute("missing", 10)
    assert goals.get(goal.id).current_amount == 0


def test_delete_is_idempotent() -> None:
    goals = SavingsGoalService()
    goal = goals.create(_draft())
    goals.delete(goal.id)
    goals.delete(goal.id)
    assert goals.all() == []


def test_days_remaining_rounds_up_and_goes_negative() -> None:
    goal = SavingsGoalService().create(_draft(deadline=date(2024, 3, 10)))

    assert SavingsGoalService.days_remaining(
        goal, datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    ) == 9
    assert SavingsGoalService.days_remaining(
        goal, datetime(2024, 3, 10, 0, 0, tzinfo=timezone.utc)
    ) == 0
    assert SavingsGoalService.days_remaining(
        goal, datetime(2024, 3, 12, 6, 0, tzinfo=timezone.utc)
    ) == -2


def test_engine_goals_do_not_leak_internal_state(clock) -> None:
    engine = BudgetEngine(clock=clock)
    goal = engine.create_goal(_draft(deadline=date(2024, 3, 31)))
    goal.current_amount = 999

    assert engine.list_goals()[0].current_amount == 0
    assert engine.goal_days_remaining(goal) == 30
