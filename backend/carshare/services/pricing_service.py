"""Centralized pricing calculations for bookings, extensions and late returns."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Optional

from ..core.config import settings
from ..core.exceptions import ValidationException

CENT = Decimal("0.01")
SECONDS_PER_HOUR = Decimal("3600")
HOURS_PER_DAY = Decimal("24")


def money(value: Decimal) -> Decimal:
    """Round to 2 dp, half-up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def hours_between(start: datetime, end: datetime) -> Decimal:
    return Decimal(str((end - start).total_seconds())) / SECONDS_PER_HOUR


@dataclass(frozen=True)
class PricingPolicy:
    platform_fee_rate: Decimal
    grace_period_hours: Decimal
    late_day_threshold: Decimal
    late_penalty_multiplier: Decimal
    early_return_refund_rate: Decimal = Decimal("0")
    early_return_platform_share: Decimal = Decimal("0")

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            platform_fee_rate=Decimal(settings.platform_fee_rate),
            grace_period_hours=Decimal(settings.late_return_grace_period_hours),
            late_day_threshold=Decimal(settings.late_return_day_threshold),
            late_penalty_multiplier=Decimal(settings.late_return_penalty_multiplier),
            early_return_refund_rate=Decimal(settings.early_return_refund_rate),
            early_return_platform_share=Decimal(settings.early_return_platform_share),
        )


@dataclass(frozen=True)
class BookingQuote:
    hours: Decimal
    base_price: Decimal
    platform_fee: Decimal
    total_amount: Decimal


@dataclass(frozen=True)
class ExcessFeeQuote:
    overtime_hours: Decimal
    excess_days: int
    fee: Decimal

    @property
    def is_late(self) -> bool:
        return self.fee > 0


@dataclass(frozen=True)
class EarlyReturnQuote:
    used_days: Decimal
    booked_days: int
    refund: Decimal
    platform_share: Decimal

    @property
    def applies(self) -> bool:
        return self.refund > 0


class PricingService:
    """
    Compute booking totals from the car's hourly rate.

    ``base = rate * hours`` and ``fee = base * platform_fee_rate``, each
    rounded half-up to cents; ``total = base + fee``. Extensions are billed
    at the plain hourly rate with no platform fee.
    """

    def __init__(self, policy: Optional[PricingPolicy] = None) -> None:
        self.policy = policy or PricingPolicy.from_settings()

    def quote_booking(self, price_per_hour: Decimal, start: datetime, end: datetime) -> BookingQuote:
        if end <= start:
            raise ValidationException(
                "Booking end must be after start",
                code="INVALID_BOOKING_WINDOW",
                details={"start_time": start.isoformat(), "end_time": end.isoformat()},
            )
        hours = hours_between(start, end)
        base_price = money(Decimal(price_per_hour) * hours)
        platform_fee = money(base_price * self.policy.platform_fee_rate)
        return BookingQuote(
            hours=hours,
            base_price=base_price,
            platform_fee=platform_fee,
            total_amount=base_price + platform_fee,
        )

    def quote_extension(
        self, price_per_hour: Decimal, current_end: datetime, new_end: datetime
    ) -> Decimal:
        if new_end <= current_end:
            raise ValidationException(
                "New end time must be after the current end time",
                code="INVALID_EXTENSION_WINDOW",
                details={"end_time": current_end.isoformat(), "new_end_time": new_end.isoformat()},
            )
        return money(Decimal(price_per_hour) * hours_between(current_end, new_end))

    def excess_fee(
        self, price_per_hour: Decimal, end_time: datetime, returned_at: datetime
    ) -> ExcessFeeQuote:
        """
        Late-return charge.

        Overtime within the grace period is free. Beyond it, overtime is
        billed only once it exceeds the day threshold, and then by whole
        started days at the daily rate times the penalty multiplier.
        """
        overtime_hours = hours_between(end_time, returned_at)
        if overtime_hours <= self.policy.grace_period_hours:
            return ExcessFeeQuote(
                overtime_hours=max(overtime_hours, Decimal("0")), excess_days=0, fee=Decimal("0")
            )

        overtime_days = overtime_hours / HOURS_PER_DAY
        if overtime_days <= self.policy.late_day_threshold:
            return ExcessFeeQuote(overtime_hours=overtime_hours, excess_days=0, fee=Decimal("0"))

        excess_days = int(overtime_days.to_integral_value(rounding=ROUND_CEILING))
        daily_rate = Decimal(price_per_hour) * HOURS_PER_DAY
        fee = money(daily_rate * excess_days * self.policy.late_penalty_multiplier)
        return ExcessFeeQuote(overtime_hours=overtime_hours, excess_days=excess_days, fee=fee)

    def early_return_refund(
        self, start_time: datetime, end_time: datetime, returned_at: datetime, total_amount: Decimal
    ) -> EarlyReturnQuote:
        """
        Refund owed when the car comes back well before the booked end.

        Applies when the renter used at least one day but less than half of
        the booked days, counted in whole started days. The refund is a rate
        of the booking total; ``platform_share`` of it is funded by the fee
        the platform took, the rest by the owner's escrow.
        """
        booked_days = int(
            (hours_between(start_time, end_time) / HOURS_PER_DAY).to_integral_value(
                rounding=ROUND_CEILING
            )
        )
        used_days = hours_between(start_time, returned_at) / HOURS_PER_DAY
        if used_days < 1 or used_days >= Decimal(booked_days) / 2:
            return EarlyReturnQuote(
                used_days=used_days,
                booked_days=booked_days,
                refund=Decimal("0"),
                platform_share=Decimal("0"),
            )
        refund = money(Decimal(total_amount) * self.policy.early_return_refund_rate)
        return EarlyReturnQuote(
            used_days=used_days,
            booked_days=booked_days,
            refund=refund,
            platform_share=money(refund * self.policy.early_return_platform_share),
        )
