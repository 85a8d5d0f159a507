from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from carshare.core.exceptions import ValidationException
from carshare.services.pricing_service import PricingPolicy, PricingService, money

END = datetime(2030, 5, 1, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def pricing() -> PricingService:
    return PricingService(
        PricingPolicy(
            platform_fee_rate=Decimal("0.10"),
            grace_period_hours=Decimal("3"),
            late_day_threshold=Decimal("0.25"),
            late_penalty_multiplier=Decimal("1.2"),
            early_return_refund_rate=Decimal("0.5"),
            early_return_platform_share=Decimal("0.1"),
        )
    )


def test_ten_hour_booking_at_100_per_hour(pricing):
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
    quote = pricing.quote_booking(Decimal("100"), start, start + timedelta(hours=10))

    assert quote.base_price == Decimal("1000.00")
    assert quote.platform_fee == Decimal("100.00")
    assert quote.total_amount == Decimal("1100.00")


def test_fractional_hours_round_half_up(pricing):
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
    # 1h20m at 33.33/h = 44.44; fee 4.444 -> 4.44
    quote = pricing.quote_booking(Decimal("33.33"), start, start + timedelta(minutes=80))

    assert quote.base_price == Decimal("44.44")
    assert quote.platform_fee == Decimal("4.44")
    assert quote.total_amount == quote.base_price + quote.platform_fee


def test_money_rounds_half_up():
    assert money(Decimal("0.005")) == Decimal("0.01")
    assert money(Decimal("2.345")) == Decimal("2.35")


def test_reversed_window_is_rejected(pricing):
    with pytest.raises(ValidationException):
        pricing.quote_booking(Decimal("100"), END, END - timedelta(hours=1))


def test_extension_billed_at_hourly_rate_without_fee(pricing):
    assert pricing.quote_extension(Decimal("100"), END, END + timedelta(hours=5)) == Decimal("500.00")


def test_extension_must_move_end_forward(pricing):
    with pytest.raises(ValidationException):
        pricing.quote_extension(Decimal("100"), END, END)


class TestExcessFee:
    @pytest.mark.parametrize("overtime", [timedelta(0), timedelta(hours=2), timedelta(hours=3)])
    def test_within_grace_period_is_free(self, pricing, overtime):
        quote = pricing.excess_fee(Decimal("100"), END, END + overtime)
        assert quote.fee == Decimal("0")
        assert quote.excess_days == 0
        assert not quote.is_late

    def test_early_return_is_free(self, pricing):
        quote = pricing.excess_fee(Decimal("100"), END, END - timedelta(hours=2))
        assert quote.fee == Decimal("0")
        assert quote.overtime_hours == Decimal("0")

    def test_beyond_grace_but_within_day_threshold_is_free(self, pricing):
        # 5h = 0.208 days <= 0.25
        quote = pricing.excess_fee(Decimal("100"), END, END + timedelta(hours=5))
        assert quote.fee == Decimal("0")

    def test_one_started_day(self, pricing):
        # 7h = 0.29 days -> 1 day * 2400 * 1.2
        quote = pricing.excess_fee(Decimal("100"), END, END + timedelta(hours=7))
        assert quote.excess_days == 1
        assert quote.fee == Decimal("2880.00")
        assert quote.is_late

    def test_days_are_rounded_up(self, pricing):
        quote = pricing.excess_fee(Decimal("100"), END, END + timedelta(hours=30))
        assert quote.excess_days == 2
        assert quote.fee == Decimal("5760.00")


@pytest.mark.parametrize(
    "used, expected_refund",
    [
        (timedelta(hours=23), Decimal("0")),  # under a day
        (timedelta(days=1), Decimal("3960.00")),
        (timedelta(days=2, hours=23), Decimal("3960.00")),
        (timedelta(days=3), Decimal("0")),  # half of six days
    ],
)
def test_early_return_refund_window(pricing, used, expected_refund):
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
    # six days at 50/h: base 7200, total 7920
    quote = pricing.early_return_refund(
        start, start + timedelta(days=6), start + used, Decimal("7920.00")
    )
    assert quote.refund == expected_refund
    assert quote.booked_days == 6


def test_early_return_platform_share(pricing):
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
    quote = pricing.early_return_refund(
        start, start + timedelta(days=6), start + timedelta(days=1), Decimal("7920.00")
    )
    assert quote.applies
    assert quote.platform_share == Decimal("396.00")


def test_short_booking_never_has_early_refund(pricing):
    start = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
    quote = pricing.early_return_refund(
        start, start + timedelta(hours=30), start + timedelta(hours=25), Decimal("3300.00")
    )
    assert not quote.applies
