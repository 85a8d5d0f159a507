# backend/carshare/models/base_enum.py
"""
Safe enum helpers for SQLAlchemy.

SQLAlchemy's ``Enum`` persists member NAMES by default ('IN_PROGRESS').
Status columns here must hold the lowercase VALUES ('in_progress') so raw
SQL, sweeps and the ORM agree on what is stored.

Usage:
    from carshare.models.base_enum import create_safe_enum

    class Booking(Base):
        status = mapped_column(
            create_safe_enum(BookingStatus, "booking_status"),
            nullable=False,
            default=BookingStatus.PENDING,
        )
"""

from enum import Enum
from typing import Sequence, Type

from sqlalchemy import Enum as SAEnum


def create_safe_enum(
    enum_class: Type[Enum],
    name: str,
    *,
    native_enum: bool = False,
    validate_strings: bool = True,
) -> SAEnum:
    """
    Create a SQLAlchemy Enum that stores enum values (not names).

    ``native_enum`` defaults to False so the column is a VARCHAR with a
    CHECK constraint on every backend, which keeps SQLite tests and
    PostgreSQL identical.
    """
    return SAEnum(
        enum_class,
        name=name,
        native_enum=native_enum,
        create_constraint=True,
        validate_strings=validate_strings,
        values_callable=_get_enum_values,
        length=32,
    )


def _get_enum_values(enum_class: Type[Enum]) -> Sequence[str]:
    return [member.value for member in enum_class]
