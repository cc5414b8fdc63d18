"""
Period resolution tests.

Pure: no app or database needed.
"""

from datetime import datetime, time

import pytest
from webill.services.period_service import DateRange, resolve_period
from webill.validation import ValidationError

# Wednesday
NOW = datetime(2024, 5, 15, 10, 30)
END = time.max


def _end(year, month, day):
    return datetime.combine(datetime(year, month, day).date(), END)


class TestPeriodTokens:

    @pytest.mark.parametrize(
        "token,start,end",
        [
            ("today", datetime(2024, 5, 15), _end(2024, 5, 15)),
            ("yesterday", datetime(2024, 5, 14), _end(2024, 5, 14)),
            ("this-week", datetime(2024, 5, 12), _end(2024, 5, 15)),
            ("this-month", datetime(2024, 5, 1), _end(2024, 5, 31)),
            ("last-month", datetime(2024, 4, 1), _end(2024, 4, 30)),
            ("this-quarter", datetime(2024, 4, 1), _end(2024, 5, 15)),
            ("this-year", datetime(2024, 1, 1), _end(2024, 12, 31)),
            ("last-year", datetime(2023, 1, 1), _end(2023, 12, 31)),
        ],
    )
    def test_token_ranges(self, token, start, end):
        assert resolve_period(token, now=NOW) == DateRange(start, end)

    def test_week_starts_on_sunday(self):
        sunday = datetime(2024, 5, 12, 8, 0)
        period = resolve_period("this-week", now=sunday)
        assert period.start == datetime(2024, 5, 12)

    def test_full_quarter_runs_to_quarter_end(self):
        period = resolve_period("this-quarter", now=NOW, full_quarter=True)
        assert period == DateRange(datetime(2024, 4, 1), _end(2024, 6, 30))

    def test_last_month_wraps_year(self):
        period = resolve_period("last-month", now=datetime(2024, 1, 20))
        assert period == DateRange(datetime(2023, 12, 1), _end(2023, 12, 31))

    def test_unknown_token_falls_back_to_default(self):
        assert resolve_period("fortnight", now=NOW) == resolve_period("this-month", now=NOW)

    def test_unknown_token_uses_caller_default(self):
        period = resolve_period("bogus", now=NOW, default="today")
        assert period == resolve_period("today", now=NOW)

    def test_missing_token_uses_default(self):
        assert resolve_period(None, now=NOW) == resolve_period("this-month", now=NOW)

    def test_tokens_are_case_insensitive(self):
        assert resolve_period(" Last-Month ", now=NOW) == resolve_period("last-month", now=NOW)


class TestExplicitRange:

    def test_explicit_dates_win_over_token(self):
        period = resolve_period("this-year", "2024-02-01", "2024-02-10", now=NOW)
        assert period == DateRange(datetime(2024, 2, 1), _end(2024, 2, 10))

    def test_explicit_dates_are_day_aligned(self):
        period = resolve_period(None, "2024-02-01T15:45:00", "2024-02-01T09:00:00")
        assert period.start == datetime(2024, 2, 1)
        assert period.end == _end(2024, 2, 1)

    def test_single_bound_is_ignored(self):
        period = resolve_period("today", "2024-02-01", None, now=NOW)
        assert period == resolve_period("today", now=NOW)

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            resolve_period(None, "2024-03-10", "2024-03-01")

    def test_malformed_date_rejected(self):
        with pytest.raises(ValidationError):
            resolve_period(None, "not-a-date", "2024-03-01")


class TestDateRange:

    def test_previous_single_day(self):
        today = resolve_period("today", now=NOW)
        assert today.previous() == resolve_period("yesterday", now=NOW)

    def test_previous_has_same_length(self):
        period = resolve_period(None, "2024-02-01", "2024-02-10")
        previous = period.previous()
        assert previous.end < period.start
        assert previous.days == pytest.approx(period.days)

    def test_contains_is_inclusive(self):
        period = resolve_period("today", now=NOW)
        assert period.contains(period.start)
        assert period.contains(period.end)
        assert not period.contains(datetime(2024, 5, 16))

    def test_to_dict(self):
        period = resolve_period("today", now=NOW)
        assert period.to_dict() == {"from": "2024-05-15T00:00:00Z", "to": "2024-05-15T23:59:59Z"}
