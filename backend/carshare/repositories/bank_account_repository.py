"""Bank account repository."""

from sqlalchemy.orm import Session

from ..models.bank_account import BankAccount
from .base_repository import BaseRepository


class BankAccountRepository(BaseRepository[BankAccount]):
    def __init__(self, db: Session):
        super().__init__(db, BankAccount)
