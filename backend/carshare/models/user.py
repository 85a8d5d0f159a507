# backend/carshare/models/user.py
"""
User model.

Only the columns the booking and ledger core reads are modelled: role,
the two balance buckets and the compensation ban flag. Credentials and
profile data belong to the identity service.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.crypto import decrypt_field
from ..core.enums import RoleName
from ..database import Base
from .base_enum import create_safe_enum
from .types import Money, SoftDeleteMixin, TimestampMixin, UTCDateTime


class User(TimestampMixin, SoftDeleteMixin, Base):
    """Marketplace user; owns ``balance`` (available) and ``locked_balance`` (escrow)."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),
        CheckConstraint("locked_balance >= 0", name="ck_users_locked_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    phone_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[RoleName] = mapped_column(
        create_safe_enum(RoleName, "role_name"), nullable=False, default=RoleName.DRIVER
    )

    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    locked_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    banned_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    banned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def phone(self) -> Optional[str]:
        return decrypt_field(self.phone_encrypted)

    def __repr__(self) -> str:
        return f"<User {self.id} role={self.role} balance={self.balance} locked={self.locked_balance}>"
