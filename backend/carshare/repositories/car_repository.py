"""Car Repository."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.car import Car
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CarRepository(BaseRepository[Car]):
    def __init__(self, db: Session):
        super().__init__(db, Car)

    def lock(self, car_id: str, *, include_deleted: bool = False) -> Optional[Car]:
        """Row-lock the car; serialises availability writes with booking approval."""
        return self.get_by_id(car_id, include_deleted=include_deleted, for_update=True)
