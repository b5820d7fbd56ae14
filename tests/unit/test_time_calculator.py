"""
Tests for detention time and amount calculation.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.services.time_calculator import (
    calculate_detention, elapsed_minutes, grace_period_end, is_in_grace_period, round_currency
)

ARRIVAL = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


class TestElapsedMinutes:
    """Tests for elapsed_minutes"""

    def test_whole_minutes(self):
        assert elapsed_minutes(ARRIVAL, ARRIVAL + timedelta(minutes=150)) == 150

    def test_rounds_half_up(self):
        """90 seconds is 1.5 minutes and rounds to 2."""
        assert elapsed_minutes(ARRIVAL, ARRIVAL + timedelta(seconds=90)) == 2
        assert elapsed_minutes(ARRIVAL, ARRIVAL + timedelta(seconds=89)) == 1

    def test_negative_when_departure_precedes_arrival(self):
        assert elapsed_minutes(ARRIVAL, ARRIVAL - timedelta(minutes=5)) == -5


class TestCalculateDetention:
    """Tests for calculate_detention"""

    def test_billable_time_after_grace(self):
        """150 minutes on site with 120 minutes grace at $75/h bills 30 minutes, $37.50."""
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=150), 120, Decimal("75.00"))

        assert result.total_elapsed_minutes == 150
        assert result.detention_minutes == 30
        assert result.total_amount == Decimal("37.50")
        assert result.clock_skew is False

    def test_within_grace_bills_nothing(self):
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=90), 120, Decimal("75.00"))

        assert result.total_elapsed_minutes == 90
        assert result.detention_minutes == 0
        assert result.total_amount == Decimal("0.00")

    def test_exactly_at_grace_end(self):
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=120), 120, Decimal("75.00"))

        assert result.detention_minutes == 0
        assert result.total_amount == Decimal("0.00")

    def test_amount_rounded_to_cents(self):
        """7 billable minutes at $50/h is 5.8333... and rounds to 5.83."""
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=7), 0, Decimal("50"))

        assert result.total_amount == Decimal("5.83")

    def test_departure_before_arrival_is_clamped(self):
        """Clock skew yields zero time and is flagged rather than failing."""
        result = calculate_detention(ARRIVAL, ARRIVAL - timedelta(minutes=10), 120, Decimal("75.00"))

        assert result.total_elapsed_minutes == 0
        assert result.detention_minutes == 0
        assert result.total_amount == Decimal("0.00")
        assert result.clock_skew is True

    def test_zero_grace(self):
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=60), 0, Decimal("60"))

        assert result.detention_minutes == 60
        assert result.total_amount == Decimal("60.00")

    def test_negative_grace_treated_as_zero(self):
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=60), -30, Decimal("60"))

        assert result.detention_minutes == 60

    def test_accepts_string_rate(self):
        result = calculate_detention(ARRIVAL, ARRIVAL + timedelta(minutes=180), 120, "90")

        assert result.total_amount == Decimal("90.00")


class TestGracePeriod:
    """Tests for grace period helpers"""

    def test_grace_period_end(self):
        assert grace_period_end(ARRIVAL, 120) == ARRIVAL + timedelta(hours=2)

    def test_is_in_grace_period(self):
        assert is_in_grace_period(ARRIVAL, ARRIVAL + timedelta(minutes=119), 120) is True
        assert is_in_grace_period(ARRIVAL, ARRIVAL + timedelta(minutes=120), 120) is False

    def test_round_currency_half_up(self):
        assert round_currency(Decimal("2.345")) == Decimal("2.35")
        assert round_currency(Decimal("2.344")) == Decimal("2.34")
