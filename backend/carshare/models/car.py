# backend/carshare/models/car.py
"""
Car and per-date availability override models.

``CarAvailability`` rows are sparse: a missing row for a date means the
car is available that day, subject to its status and existing bookings.
"""

from datetime import date as date_type
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, Float, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.crypto import decrypt_field
from ..core.enums import CarStatus
from ..database import Base
from .base_enum import create_safe_enum
from .types import Money, SoftDeleteMixin, TimestampMixin


class Car(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "cars"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    owner_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[CarStatus] = mapped_column(
        create_safe_enum(CarStatus, "car_status"), nullable=False, default=CarStatus.PENDING
    )
    price_per_hour: Mapped[Decimal] = mapped_column(Money, nullable=False)
    requires_collateral: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pickup_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pickup_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    license_plate_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def license_plate(self) -> Optional[str]:
        return decrypt_field(self.license_plate_encrypted)

    def __repr__(self) -> str:
        return f"<Car {self.id} owner={self.owner_id} status={self.status}>"


class CarAvailability(TimestampMixin, Base):
    """Owner override for a single day."""

    __tablename__ = "car_availabilities"
    __table_args__ = (
        UniqueConstraint("car_id", "date", name="uq_car_availabilities_car_date"),
        Index("ix_car_availabilities_car_date", "car_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    car_id: Mapped[str] = mapped_column(String(26), ForeignKey("cars.id"), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
