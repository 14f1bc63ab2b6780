import pytest

from csv_utils import parse_amount, sanitize_csv_value
from models import BudgetCategory
from services import IngestCategoryAmbiguous, ValidationError, resolve_category


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, BudgetCategory.needs),
        ("", BudgetCategory.needs),
        ("Needs", BudgetCategory.needs),
        (" WANTS ", BudgetCategory.wants),
        ("need", BudgetCategory.needs),
        ("investment", BudgetCategory.investments),
        ("wnats", None),
    ],
)
def test_resolve_category(raw, expected) -> None:
    if expected is None:
        with pytest.raises(ValidationError):
            resolve_category(raw)
    else:
        assert resolve_category(raw) is expected


def test_ambiguous_category_is_an_ingest_error(monkeypatch) -> None:
    import services

    monkeypatch.setattr(
        services.Levenshtein, "distance", lambda a, b: 1, raising=True
    )
    with pytest.raises(IngestCategoryAmbiguous):
        resolve_category("nope")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1250", 1250.0),
        ("₹ 1,250.50", 1250.5),
        ("1,20,000", 120000.0),
        ("12,5", 12.5),
        ("$7.999", 8.0),
        ("Rs. 300", 300.0),
    ],
)
def test_parse_amount(raw, expected) -> None:
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "-5", "0", "NaN", "Infinity"])
def test_parse_amount_rejects(raw) -> None:
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_amount_allows_zero_when_asked() -> None:
    assert parse_amount("0", allow_zero=True) == 0.0


def test_sanitize_csv_value() -> None:
    assert sanitize_csv_value("=1+1") == "\t=1+1"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"
    assert sanitize_csv_value("  Groceries ") == "Groceries"
    assert sanitize_csv_value("") == ""
