from datetime import date, timedelta
from decimal import Decimal

import pytest

from petshop.models import Appointment

NEXT_WEEK = (date.today() + timedelta(days=7)).isoformat()


def book(client, headers, service_id, day=NEXT_WEEK, at="10:00:00", **extra):
    payload = {
        "service_id": service_id,
        "appointment_date": day,
        "appointment_time": at,
        "pet_name": "Milo",
        "pet_type": "dog",
    }
    payload.update(extra)
    return client.post("/api/appointments", json=payload, headers=headers)


@pytest.fixture
def appointment(client, customer_headers, service):
    resp = book(client, customer_headers, service.id)
    assert resp.status_code == 201, resp.json()
    return resp.json()["data"]


def test_booking_stores_service_price(appointment, service):
    assert appointment["status"] == "scheduled"
    assert appointment["service_name"] == "Full Grooming"
    assert Decimal(appointment["total_amount"]) == Decimal("150000")


def test_slot_cannot_be_double_booked(client, other_headers, service, appointment):
    resp = book(client, other_headers, service.id)

    assert resp.status_code == 409
    assert resp.json()["message"] == "This time slot is already booked"


def test_cancelled_slot_can_be_rebooked(client, customer_headers, other_headers, service, appointment):
    client.put(
        f"/api/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers=customer_headers,
    )

    resp = book(client, other_headers, service.id)

    assert resp.status_code == 201


def test_past_booking_is_rejected(client, customer_headers, service):
    yesterday = (date.today() - timedelta(days=1)).isoformat()

    resp = book(client, customer_headers, service.id, day=yesterday)

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_unknown_and_unavailable_services(client, db, customer_headers, service):
    assert book(client, customer_headers, 777).status_code == 404

    service.is_available = False
    db.commit()

    resp = book(client, customer_headers, service.id)
    assert resp.status_code == 400
    assert resp.json()["error"] == "unavailable"


def test_list_is_scoped_to_owner(client, customer_headers, other_headers, admin_headers, service, appointment):
    book(client, other_headers, service.id, at="14:00:00")

    own = client.get("/api/appointments", headers=customer_headers).json()["data"]
    assert [a["id"] for a in own["appointments"]] == [appointment["id"]]

    everything = client.get("/api/appointments", headers=admin_headers).json()["data"]
    assert everything["pagination"]["total"] == 2

    assert client.get(f"/api/appointments/{appointment['id']}", headers=other_headers).status_code == 404


def test_customer_may_only_cancel(client, customer_headers, appointment):
    resp = client.put(
        f"/api/appointments/{appointment['id']}/status",
        json={"status": "confirmed"},
        headers=customer_headers,
    )

    assert resp.status_code == 403


def test_completed_appointment_cannot_be_cancelled_by_customer(
    client, customer_headers, admin_headers, appointment
):
    done = client.put(
        f"/api/appointments/{appointment['id']}/status",
        json={"status": "completed"},
        headers=admin_headers,
    )
    assert done.status_code == 200

    resp = client.put(
        f"/api/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers=customer_headers,
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_transition"


def test_reschedule(client, customer_headers, other_headers, service, appointment):
    book(client, other_headers, service.id, at="11:00:00")

    taken = client.put(
        f"/api/appointments/{appointment['id']}",
        json={"appointment_time": "11:00:00"},
        headers=customer_headers,
    )
    assert taken.status_code == 409

    moved = client.put(
        f"/api/appointments/{appointment['id']}",
        json={"appointment_time": "15:00:00", "special_requests": "Gentle with the ears"},
        headers=customer_headers,
    )
    assert moved.status_code == 200
    assert moved.json()["data"]["appointment_time"] == "15:00:00"

    empty = client.put(f"/api/appointments/{appointment['id']}", json={}, headers=customer_headers)
    assert empty.status_code == 400


def test_admin_deletes_appointment(client, db, customer_headers, admin_headers, appointment):
    assert client.delete(
        f"/api/appointments/{appointment['id']}", headers=customer_headers
    ).status_code == 403

    resp = client.delete(f"/api/appointments/{appointment['id']}", headers=admin_headers)

    assert resp.status_code == 200
    assert db.query(Appointment).count() == 0
