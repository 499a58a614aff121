"""
Tests for day-scoped counter resets
"""

from decimal import Decimal
from datetime import datetime, timezone, timedelta

from payment_core.periods import (
    day_key, minute_key, is_new_period, reset_if_new_period, parse_timestamp, format_timestamp
)


class TestPeriodKeys:

    def test_day_key_is_utc(self):
        manila = timezone(timedelta(hours=8))
        # 07:00 in Manila is still the previous day in UTC
        assert day_key(datetime(2026, 3, 10, 7, 0, tzinfo=manila)) == "2026-03-09"

    def test_naive_times_are_utc(self):
        assert day_key(datetime(2026, 3, 10, 23, 59)) == "2026-03-10"

    def test_minute_key(self):
        assert minute_key(datetime(2026, 3, 10, 9, 41, 59, tzinfo=timezone.utc)) == "2026-03-10T09:41"


class TestResetIfNewPeriod:

    def test_same_day_keeps_counter(self):
        last_reset = datetime(2026, 3, 10, 0, 5, tzinfo=timezone.utc)
        now = datetime(2026, 3, 10, 23, 55, tzinfo=timezone.utc)
        assert reset_if_new_period(Decimal("120.00"), last_reset, now) == (Decimal("120.00"), last_reset)

    def test_new_day_resets_counter(self):
        last_reset = datetime(2026, 3, 10, 23, 55, tzinfo=timezone.utc)
        now = datetime(2026, 3, 11, 0, 5, tzinfo=timezone.utc)
        counter, reset_at = reset_if_new_period(Decimal("120.00"), last_reset, now)
        assert counter == Decimal("0")
        assert isinstance(counter, Decimal)
        assert reset_at == now

    def test_int_counters_stay_int(self):
        now = datetime(2026, 3, 11, tzinfo=timezone.utc)
        counter, _ = reset_if_new_period(42, now - timedelta(days=1), now)
        assert counter == 0
        assert isinstance(counter, int)

    def test_never_reset_counts_as_new_period(self):
        now = datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert is_new_period(None, now)
        assert reset_if_new_period(5, None, now) == (0, now)


class TestTimestamps:

    def test_round_trip(self):
        moment = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert parse_timestamp(format_timestamp(moment)) == moment

    def test_empty_values(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert format_timestamp(None) is None
