from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from carshare.core.enums import BookingStatus, RoleName


@pytest.fixture
def owner(make_user):
    return make_user(RoleName.OWNER)


@pytest.fixture
def renter(make_user):
    return make_user(RoleName.DRIVER)


@pytest.fixture
def car(make_car, owner):
    return make_car(owner)


def test_availability_reports_overlap(client, car, renter, make_booking, auth_headers, window):
    start, end = window(2, 10)
    booking = make_booking(renter, car, start, end, status=BookingStatus.APPROVED)

    response = client.get(
        f"/api/v1/cars/{car.id}/availability",
        params={
            "start": (end - timedelta(hours=1)).isoformat(),
            "end": (end + timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(renter),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["available"] is False
    assert body["reason"] == "booking_overlap"
    assert body["conflicting_booking_ids"] == [booking.id]


def test_owner_blocks_and_reopens_dates(client, car, owner, auth_headers):
    # the PUT response lists dates from today onwards
    day = (datetime.now(timezone.utc).date() + timedelta(days=5)).isoformat()
    url = f"/api/v1/cars/{car.id}/unavailability"

    blocked = client.put(url, json={"dates": [day]}, headers=auth_headers(owner))
    assert blocked.status_code == 200
    assert blocked.json()["dates"] == [day]

    listed = client.get(f"/api/v1/cars/{car.id}/unavailable-dates", headers=auth_headers(owner))
    assert listed.json()["dates"] == [day]

    reopened = client.put(
        url, json={"dates": [day], "is_available": True}, headers=auth_headers(owner)
    )
    assert reopened.json()["dates"] == []


def test_blocking_booked_date_is_409(client, car, owner, renter, make_booking, auth_headers, window):
    start, end = window(3, 10)
    make_booking(renter, car, start, end, status=BookingStatus.APPROVED)

    response = client.put(
        f"/api/v1/cars/{car.id}/unavailability",
        json={"dates": [start.date().isoformat()]},
        headers=auth_headers(owner),
    )

    assert response.status_code == 409
    assert response.json()["code"] == "AVAILABILITY_CONFLICT"
    assert response.json()["errors"]["date"] == start.date().isoformat()


def test_non_owner_cannot_block(client, car, renter, auth_headers, window):
    start, _ = window(3, 1)
    response = client.put(
        f"/api/v1/cars/{car.id}/unavailability",
        json={"dates": [start.date().isoformat()]},
        headers=auth_headers(renter),
    )
    assert response.status_code == 403
