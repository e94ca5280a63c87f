import dataclasses
from datetime import date

import pytest

from mailbyebye.errors import ConflictingFilter, InvalidRange, ValidationError
from mailbyebye.filters import (
    DateFilter, MODE_CUTOFF, MODE_RANGE, build_date_filter, gmail_query, parse_date,
    vault_time_bounds, year_range,
)


def test_range_within_a_year():
    f = build_date_filter(start="2023-01-01", end="2023-12-31")
    assert f.mode == MODE_RANGE
    assert f.start == date(2023, 1, 1)
    assert f.end == date(2023, 12, 31)


@pytest.mark.parametrize("start,end", [
    ("2023-05-05", "2023-05-05"),
    ("2023-01-01", "2024-01-01"),  # exactly 365 days
    ("2024-01-01", "2024-12-31"),  # leap year
])
def test_range_boundaries_accepted(start, end):
    assert build_date_filter(start=start, end=end).is_range


@pytest.mark.parametrize("start,end", [
    ("2023-01-01", "2024-01-02"),  # 366 days
    ("2023-01-01", "2024-02-05"),  # 400 days
    ("2023-06-01", "2023-05-31"),  # reversed
])
def test_invalid_ranges(start, end):
    with pytest.raises(InvalidRange):
        build_date_filter(start=start, end=end)


def test_half_a_range_is_invalid():
    with pytest.raises(InvalidRange):
        build_date_filter(start="2023-01-01")
    with pytest.raises(InvalidRange):
        build_date_filter(end="2023-01-01")


@pytest.mark.parametrize("kwargs", [
    {"start": "2023-01-01", "end": "2023-02-01", "days": 30},
    {"start": "2023-01-01", "end": "2023-02-01", "cutoff": "2022-01-01"},
    {"start": "2023-01-01", "days": 30},
    {"start": "2030-01-01", "end": "2020-01-01", "days": 1},
    {"days": 30, "cutoff": "2022-01-01"},
])
def test_conflicting_filters(kwargs):
    with pytest.raises(ConflictingFilter):
        build_date_filter(**kwargs)


def test_validation_errors_share_a_base():
    assert issubclass(InvalidRange, ValidationError)
    assert issubclass(ConflictingFilter, ValidationError)


def test_days_becomes_cutoff():
    f = build_date_filter(days=365, today=date(2024, 6, 1))
    assert f.mode == MODE_CUTOFF
    assert f.cutoff == date(2023, 6, 2)


def test_days_must_be_positive():
    with pytest.raises(ValidationError):
        build_date_filter(days=0)


def test_nothing_given():
    with pytest.raises(ValidationError) as exc:
        build_date_filter()
    assert exc.value.usage


def test_filter_is_immutable():
    f = DateFilter.before(date(2020, 1, 1))
    with pytest.raises(dataclasses.FrozenInstanceError):
        f.cutoff = date(2021, 1, 1)


def test_direct_construction_validates():
    with pytest.raises(InvalidRange):
        DateFilter.between(date(2020, 1, 1), date(2022, 1, 1))


@pytest.mark.parametrize("text", ["2024-01-31", "2024/01/31", "31-Jan-2024"])
def test_parse_date_formats(text):
    assert parse_date(text) == date(2024, 1, 31)


def test_parse_date_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_date("last tuesday")


def test_year_range():
    assert year_range("2019") == (date(2019, 1, 1), date(2019, 12, 31))


def test_gmail_query_cutoff():
    assert gmail_query(DateFilter.before(date(2022, 3, 4))) == "before:2022/03/04"


def test_gmail_query_range_includes_end_day():
    f = DateFilter.between(date(2023, 1, 1), date(2023, 12, 31))
    assert gmail_query(f) == "after:2023/01/01 before:2024/01/01"


def test_vault_time_bounds():
    assert vault_time_bounds(DateFilter.before(date(2022, 3, 4))) == (None, "2022-03-04T00:00:00Z")
    f = DateFilter.between(date(2023, 1, 1), date(2023, 1, 31))
    assert vault_time_bounds(f) == ("2023-01-01T00:00:00Z", "2023-02-01T00:00:00Z")


def test_year_out_of_range():
    with pytest.raises(ValidationError):
        year_range("0")


def test_days_past_the_calendar():
    with pytest.raises(ValidationError):
        build_date_filter(days=99999999, today=date(2024, 6, 1))
