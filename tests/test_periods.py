from datetime import date, datetime, timedelta, timezone

import pytest

from periods import days_in_month, month_key, parse_month_key, resolve_month


def test_month_key_uses_utc() -> None:
    ist = timezone(timedelta(hours=5, minutes=30))
    # 1 April 02:00 in India is still 31 March in UTC
    assert month_key(datetime(2024, 4, 1, 2, 0, tzinfo=ist)) == "2024-03"
    assert month_key(datetime(2024, 12, 31, 23, 59)) == "2024-12"


def test_resolve_month_bounds() -> None:
    period = resolve_month("2024-02")
    assert period.slug == "2024-02"
    assert period.start == date(2024, 2, 1)
    assert period.end == date(2024, 2, 29)

    december = resolve_month(now=datetime(2023, 12, 5, tzinfo=timezone.utc))
    assert december.end == date(2023, 12, 31)
    assert december.contains(datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc))
    assert not december.contains(datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_days_in_month() -> None:
    assert days_in_month(datetime(2023, 2, 1)) == 28
    assert days_in_month(datetime(2024, 2, 1)) == 29
    assert days_in_month(datetime(2024, 3, 1)) == 31
    assert days_in_month(datetime(2024, 6, 1)) == 30


@pytest.mark.parametrize("bad", ["2024-13", "2024-3", "24-03", "march", "2024/03"])
def test_parse_month_key_rejects_malformed(bad: str) -> None:
    with pytest.raises(ValueError):
        parse_month_key(bad)


def test_parse_month_key() -> None:
    assert parse_month_key("2025-01") == (2025, 1)
