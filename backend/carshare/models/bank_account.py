"""Payout bank accounts (account number stored encrypted)."""

from typing import Optional

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..core.crypto import decrypt_field
from ..database import Base
from .types import SoftDeleteMixin, TimestampMixin


class BankAccount(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "bank_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_holder: Mapped[str] = mapped_column(String(255), nullable=False)
    account_number_encrypted: Mapped[str] = mapped_column(Text, nullable=False)

    @property
    def account_number(self) -> Optional[str]:
        return decrypt_field(self.account_number_encrypted)
