# backend/tests/conftest.py
"""
Pytest configuration for the carshare backend.

Every test gets its own in-memory SQLite database, a fresh fake PayOS
gateway and no Redis, so nothing leaks between tests or reaches a real
service.
"""

import os

# Set test settings BEFORE any carshare imports
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_URL"] = ""
os.environ["PAYOS_FAKE"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from carshare.api.dependencies.database import get_db as dependency_get_db
from carshare.api.dependencies.services import get_payment_gateway_dep
from carshare.core.crypto import encrypt_field
from carshare.core.enums import BookingStatus, CarStatus, RoleName
from carshare.core.principal import CurrentUser
from carshare.core.redis import set_redis_client
from carshare.database import Base, get_db
from carshare.domain.state_machines import transition_booking
from carshare.integrations.payos_client import FakePayOSClient, set_payment_gateway
from carshare.main import create_app
from carshare.init_db import init_db
from carshare.models.bank_account import BankAccount
from carshare.models.booking import Booking
from carshare.models.car import Car
from carshare.models.user import User
from carshare.services.pricing_service import PricingService

# Fixed clock for service-level tests; far enough ahead that no booking
# window built from it is ever in the real past.
NOW = datetime(2030, 3, 4, 8, 0, tzinfo=timezone.utc)

# Walk from pending to each status along legal edges only.
_BOOKING_PATHS = {
    BookingStatus.PENDING: [],
    BookingStatus.APPROVED: [BookingStatus.APPROVED],
    BookingStatus.REJECTED: [BookingStatus.REJECTED],
    BookingStatus.CANCELLED: [BookingStatus.CANCELLED],
    BookingStatus.EXPIRED: [BookingStatus.APPROVED, BookingStatus.EXPIRED],
    BookingStatus.IN_PROGRESS: [BookingStatus.APPROVED, BookingStatus.IN_PROGRESS],
    BookingStatus.COMPLETED: [
        BookingStatus.APPROVED,
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
    ],
}


class FakeRedis:
    """Just enough of redis.Redis for the booking mutex and idempotency cache."""

    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self.store.get(key)

    def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        return True

    def setex(self, key: str, ttl: int, value: Any) -> bool:
        self.store[key] = value
        return True

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    def close(self) -> None:
        self.store.clear()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine() -> Iterator[Engine]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Gateway and Redis isolation
# ============================================================================


@pytest.fixture(autouse=True)
def payos_fake() -> Iterator[FakePayOSClient]:
    """Fresh in-memory gateway per test, installed as the process-wide one."""
    gateway = FakePayOSClient()
    set_payment_gateway(gateway)
    set_redis_client(None)
    yield gateway
    set_payment_gateway(None)
    set_redis_client(None)


@pytest.fixture
def fake_redis() -> Iterator[FakeRedis]:
    client = FakeRedis()
    set_redis_client(client)  # type: ignore[arg-type]
    yield client
    set_redis_client(None)


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    counter = {"n": 0}

    def _make_user(
        role: RoleName = RoleName.DRIVER,
        *,
        balance: Decimal = Decimal("0"),
        locked_balance: Decimal = Decimal("0"),
        name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            name=name or f"{role.value.title()} {counter['n']}",
            email=f"{role.value}{counter['n']}@example.com",
            phone_encrypted=encrypt_field(phone),
            role=role,
            balance=Decimal(balance),
            locked_balance=Decimal(locked_balance),
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_car(db: Session) -> Callable[..., Car]:
    def _make_car(
        owner: User,
        *,
        price_per_hour: Decimal = Decimal("100"),
        status: CarStatus = CarStatus.AVAILABLE,
        license_plate: Optional[str] = "51A-123.45",
    ) -> Car:
        car = Car(
            owner_id=owner.id,
            price_per_hour=Decimal(price_per_hour),
            status=status,
            license_plate_encrypted=encrypt_field(license_plate),
            pickup_address="12 Nguyen Hue, District 1",
        )
        db.add(car)
        db.commit()
        return car

    return _make_car


@pytest.fixture
def make_booking(db: Session) -> Callable[..., Booking]:
    """Insert a priced booking and walk it to ``status`` without touching the ledger."""

    pricing = PricingService()

    def _make_booking(
        renter: User,
        car: Car,
        start_time: datetime,
        end_time: datetime,
        *,
        status: BookingStatus = BookingStatus.PENDING,
        is_paid: bool = False,
    ) -> Booking:
        quote = pricing.quote_booking(car.price_per_hour, start_time, end_time)
        booking = Booking(
            renter_id=renter.id,
            car_id=car.id,
            status=BookingStatus.PENDING,
            start_time=start_time,
            end_time=end_time,
            base_price=quote.base_price,
            platform_fee=quote.platform_fee,
            total_amount=quote.total_amount,
            is_paid=is_paid,
        )
        db.add(booking)
        db.flush()
        for target in _BOOKING_PATHS[status]:
            transition_booking(booking, target, now=start_time)
        if status == BookingStatus.IN_PROGRESS:
            car.status = CarStatus.RENTED
        db.commit()
        return booking

    return _make_booking


@pytest.fixture
def make_bank_account(db: Session) -> Callable[..., BankAccount]:
    def _make_bank_account(user: User, account_number: str = "0123456789") -> BankAccount:
        account = BankAccount(
            user_id=user.id,
            bank_name="Vietcombank",
            account_holder=user.name,
            account_number_encrypted=encrypt_field(account_number),
        )
        db.add(account)
        db.commit()
        return account

    return _make_bank_account


def as_actor(user: User) -> CurrentUser:
    return CurrentUser(user_id=user.id, role=RoleName(user.role))


@pytest.fixture
def actor() -> Callable[[User], CurrentUser]:
    return as_actor


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def window(now: datetime) -> Callable[..., tuple]:
    """``window(day_offset, hours)`` -> (start, end) starting 09:00 UTC that day."""

    def _window(day_offset: int = 1, hours: int = 10, start_hour: int = 9) -> tuple:
        start = now.replace(hour=start_hour, minute=0) + timedelta(days=day_offset)
        return start, start + timedelta(hours=hours)

    return _window


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(db: Session, payos_fake: FakePayOSClient) -> Iterator[TestClient]:
    app = create_app()

    def override_get_db() -> Iterator[Session]:
        yield db

    app.dependency_overrides[dependency_get_db] = override_get_db
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway_dep] = lambda: payos_fake

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    def _headers(user: User) -> Dict[str, str]:
        return {"X-User-Id": user.id}

    return _headers
