from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from clinicbook.core.database import get_db, get_redis
from clinicbook.core.security import Actor, UserRole, create_actor_token
from clinicbook.main import app
from tests.factories import doctor_actor, next_monday, patient_actor


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: None
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth(actor):
    return {"Authorization": f"Bearer {create_actor_token(actor)}"}


def booking(doctor, slot="09:00", **extra):
    return {
        "doctor_id": doctor.id,
        "appointment_date": next_monday().isoformat(),
        "appointment_time": slot,
        "reason": "Recurring headaches",
        **extra,
    }


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"] == {"database": "ok", "slot_cache": "disabled"}


def test_requires_authentication(client, doctor):
    response = client.get(f"/api/v1/doctors/{doctor.id}/slots", params={"date": next_monday().isoformat()})
    assert response.status_code in (401, 403)


def test_invalid_token(client, doctor):
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/slots",
        params={"date": next_monday().isoformat()},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


def test_patient_token_must_name_a_patient_record(client, doctor):
    token = create_actor_token(Actor(role=UserRole.PATIENT, user_id=77))
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/availability",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


def test_expired_token(client, doctor, patient):
    token = create_actor_token(patient_actor(patient), expires_delta=timedelta(minutes=-1))
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/availability",
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


def test_available_slots(client, doctor, patient):
    response = client.get(
        f"/api/v1/doctors/{doctor.id}/slots",
        params={"date": next_monday().isoformat()},
        headers=auth(patient_actor(patient)),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["available"] is True
    assert data["available_slots"] == ["09:00", "09:30", "10:30", "11:00", "11:30"]
    assert data["consultation_fee"] == 150.0


def test_slots_for_unknown_doctor(client, patient):
    response = client.get(
        "/api/v1/doctors/9999/slots",
        params={"date": next_monday().isoformat()},
        headers=auth(patient_actor(patient)),
    )
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


def test_book_and_conflict(client, doctor, make_patient):
    first, second = make_patient(), make_patient()

    response = client.post("/api/v1/appointments", json=booking(doctor), headers=auth(patient_actor(first)))
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "scheduled"
    assert data["patient_id"] == first.id
    assert data["payment"]["amount"] == 150.0

    response = client.post("/api/v1/appointments", json=booking(doctor), headers=auth(patient_actor(second)))
    assert response.status_code == 409
    assert response.json()["reason"] == "provider_slot_taken"


def test_booking_validation_errors(client, doctor, patient):
    headers = auth(patient_actor(patient))

    response = client.post("/api/v1/appointments", json=booking(doctor, slot="10:00"), headers=headers)
    assert response.status_code == 400

    response = client.post("/api/v1/appointments", json=booking(doctor, duration=5), headers=headers)
    assert response.status_code == 422


def test_cancel_and_list(client, doctor, patient):
    headers = auth(patient_actor(patient))
    appointment_id = client.post("/api/v1/appointments", json=booking(doctor), headers=headers).json()["id"]

    response = client.put(
        f"/api/v1/appointments/{appointment_id}/cancel", json={"reason": "Feeling better"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    response = client.get("/api/v1/appointments", params={"status": "cancelled"}, headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["pagination"]["total_appointments"] == 1
    assert data["appointments"][0]["cancellation_reason"] == "Feeling better"


def test_invalid_transition_returns_conflict(client, doctor, patient):
    headers = auth(patient_actor(patient))
    appointment_id = client.post("/api/v1/appointments", json=booking(doctor), headers=headers).json()["id"]

    response = client.post(
        f"/api/v1/appointments/{appointment_id}/transitions", json={"status": "confirmed"}, headers=headers
    )
    assert response.status_code == 409
    assert response.json()["error"] == "InvalidTransition"


def test_payment_confirms(client, doctor, patient):
    headers = auth(patient_actor(patient))
    appointment_id = client.post("/api/v1/appointments", json=booking(doctor), headers=headers).json()["id"]

    response = client.post(
        f"/api/v1/appointments/{appointment_id}/payment",
        json={"status": "paid", "payment_method": "card", "transaction_id": "txn_1"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert response.json()["payment"]["status"] == "paid"


def test_reschedule(client, doctor, make_patient):
    first, second = make_patient(), make_patient()
    client.post("/api/v1/appointments", json=booking(doctor, slot="11:00"), headers=auth(patient_actor(first)))
    headers = auth(patient_actor(second))
    appointment_id = client.post("/api/v1/appointments", json=booking(doctor), headers=headers).json()["id"]
    url = f"/api/v1/appointments/{appointment_id}/reschedule"

    response = client.put(
        url, json={"appointment_date": next_monday().isoformat(), "appointment_time": "11:00"}, headers=headers
    )
    assert response.status_code == 409
    assert response.json()["reason"] == "provider_slot_taken"

    response = client.put(
        url, json={"appointment_date": next_monday().isoformat(), "appointment_time": "11:30"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["appointment_time"] == "11:30"

    response = client.get(
        f"/api/v1/doctors/{doctor.id}/slots", params={"date": next_monday().isoformat()}, headers=headers
    )
    assert response.json()["available_slots"] == ["09:00", "09:30", "10:30"]


def test_clinical_notes_are_doctor_only(client, doctor, patient):
    patient_headers = auth(patient_actor(patient))
    appointment_id = client.post(
        "/api/v1/appointments", json=booking(doctor), headers=patient_headers
    ).json()["id"]
    url = f"/api/v1/appointments/{appointment_id}/clinical-notes"

    response = client.put(url, json={"prescription": "Rest"}, headers=patient_headers)
    assert response.status_code == 403

    response = client.put(
        url,
        json={"prescription": "Rest and fluids", "meeting_link": "https://meet.example.com/xyz"},
        headers=auth(doctor_actor(doctor)),
    )
    assert response.status_code == 200
    assert response.json()["prescription"] == "Rest and fluids"
    assert response.json()["meeting_link"] == "https://meet.example.com/xyz"


def test_other_patient_is_forbidden(client, doctor, make_patient):
    owner, stranger = make_patient(), make_patient()
    appointment_id = client.post(
        "/api/v1/appointments", json=booking(doctor), headers=auth(patient_actor(owner))
    ).json()["id"]

    response = client.get(f"/api/v1/appointments/{appointment_id}", headers=auth(patient_actor(stranger)))
    assert response.status_code == 403


def test_doctor_updates_availability(client, doctor):
    headers = auth(doctor_actor(doctor))
    template = {"monday": {"is_available": True, "start_time": "13:00", "end_time": "14:00", "slot_duration": 30}}

    response = client.put(f"/api/v1/doctors/{doctor.id}/availability", json=template, headers=headers)
    assert response.status_code == 200
    assert response.json()["monday"]["start_time"] == "13:00"

    response = client.get(
        f"/api/v1/doctors/{doctor.id}/slots", params={"date": next_monday().isoformat()}, headers=headers
    )
    assert response.json()["available_slots"] == ["13:00", "13:30"]


def test_invalid_availability_is_rejected(client, doctor):
    template = {"monday": {"is_available": True, "start_time": "14:00", "end_time": "13:00"}}
    response = client.put(
        f"/api/v1/doctors/{doctor.id}/availability", json=template, headers=auth(doctor_actor(doctor))
    )
    assert response.status_code == 422


def test_reminders_are_admin_only(client, patient):
    response = client.post("/api/v1/appointments/reminders/dispatch", headers=auth(patient_actor(patient)))
    assert response.status_code == 403
