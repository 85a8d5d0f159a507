# backend/carshare/repositories/availability_repository.py
"""
Availability Repository

Per-date overrides for cars. A missing row means "available by default".
"""

from datetime import date
import logging
from typing import Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.car import CarAvailability
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[CarAvailability]):
    def __init__(self, db: Session):
        super().__init__(db, CarAvailability)

    def get_for_dates(self, car_id: str, dates: Iterable[date]) -> Dict[date, CarAvailability]:
        wanted = sorted(set(dates))
        if not wanted:
            return {}
        query = self._build_query().filter(
            CarAvailability.car_id == car_id,
            CarAvailability.date.in_(wanted),
        )
        return {row.date: row for row in self._execute_query(query)}

    def get_unavailable_dates(self, car_id: str, start_date: date, end_date: date) -> List[date]:
        """Override dates in ``[start_date, end_date]`` flagged unavailable."""
        query = (
            self._build_query()
            .filter(
                CarAvailability.car_id == car_id,
                CarAvailability.date >= start_date,
                CarAvailability.date <= end_date,
                CarAvailability.is_available.is_(False),
            )
            .order_by(CarAvailability.date)
        )
        return [row.date for row in self._execute_query(query)]

    def upsert(self, car_id: str, day: date, is_available: bool) -> CarAvailability:
        """Insert or update the override for one day; unchanged rows are left alone."""
        try:
            existing = (
                self._build_query()
                .filter(CarAvailability.car_id == car_id, CarAvailability.date == day)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading availability for {car_id} on {day}: {str(e)}")
            raise RepositoryException(f"Failed to load availability: {str(e)}") from e
        if existing is None:
            return self.create(car_id=car_id, date=day, is_available=is_available)
        if existing.is_available != is_available:
            existing.is_available = is_available
            self.flush()
        return existing
