import pytest


@pytest.fixture
def booking(lesson_date):
    def _booking(start: str = "10:00", duration: int = 60, **overrides):
        payload = {
            "resource": {"resource_id": "car-1", "lesson_type": "manual"},
            "scheduled_date": lesson_date.isoformat(),
            "start_time": start,
            "duration_minutes": duration,
            "participants": [{"guest_name": "Alex Student", "guest_email": "alex@example.com"}],
            "identity": "cust-1",
        }
        payload.update(overrides)
        return payload

    return _booking


def test_create_reservation(client, weekday_templates, booking):
    response = client.post("/api/v1/reservations", json=booking())

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "HELD"
    assert body["start_time"] == "10:00:00"
    assert body["end_time"] == "11:00:00"
    assert body["participants"][0]["guest_name"] == "Alex Student"

    fetched = client.get(f"/api/v1/reservations/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["id"]


def test_overlapping_reservation_conflicts(client, weekday_templates, booking):
    assert client.post("/api/v1/reservations", json=booking()).status_code == 201

    response = client.post("/api/v1/reservations", json=booking(start="10:30"))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "SLOT_UNAVAILABLE"


def test_outside_schedule_conflicts(client, weekday_templates, booking):
    response = client.post("/api/v1/reservations", json=booking(start="07:00"))

    assert response.status_code == 409


def test_duration_out_of_bounds_is_rejected(client, weekday_templates, booking):
    assert client.post("/api/v1/reservations", json=booking(duration=5)).status_code == 422


def test_participant_without_identity_or_name_is_rejected(client, weekday_templates, booking):
    response = client.post("/api/v1/reservations", json=booking(participants=[{"guest_email": "x@y.z"}]))

    assert response.status_code == 422


def test_unknown_reservation(client):
    response = client.get("/api/v1/reservations/missing")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


def test_group_session_participants(client, lesson_date, booking):
    client.post(
        "/api/v1/schedule/extra",
        json={"date": lesson_date.isoformat(), "start_time": "18:00", "end_time": "21:00"},
    )
    created = client.post(
        "/api/v1/reservations",
        json=booking(
            start="18:00",
            duration=120,
            resource={
                "resource_type": "group_course",
                "resource_id": "room-1",
                "capacity": 3,
                "supervisor_limit": 1,
                "lesson_type": "risk-1",
            },
        ),
    )
    assert created.status_code == 201
    reservation_id = created.json()["id"]

    supervisor = client.post(
        f"/api/v1/reservations/{reservation_id}/participants",
        json={"guest_name": "Sam", "is_supervisor": True},
    )
    assert supervisor.status_code == 200
    assert supervisor.json()["supervisor_count"] == 1

    second_supervisor = client.post(
        f"/api/v1/reservations/{reservation_id}/participants",
        json={"guest_name": "Kim", "is_supervisor": True},
    )
    assert second_supervisor.status_code == 409
    assert second_supervisor.json()["detail"]["code"] == "SUPERVISOR_LIMIT_EXCEEDED"

    participant_id = supervisor.json()["participants"][-1]["id"]
    removed = client.delete(f"/api/v1/reservations/participants/{participant_id}")
    assert removed.status_code == 200
    assert removed.json()["current_participant_count"] == 1


def test_cancel_with_and_without_body(client, weekday_templates, booking):
    first = client.post("/api/v1/reservations", json=booking()).json()
    second = client.post("/api/v1/reservations", json=booking(start="13:00")).json()

    cancelled = client.post(
        f"/api/v1/reservations/{first['id']}/cancel", json={"reason": "customer_cancelled"}
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["cancellation_reason"] == "customer_cancelled"

    bare = client.post(f"/api/v1/reservations/{second['id']}/cancel")
    assert bare.status_code == 200
    assert bare.json()["status"] == "CANCELLED"
    assert bare.json()["cancellation_reason"] == "customer_cancelled"


def test_confirm_then_complete(client, weekday_templates, booking):
    reservation_id = client.post("/api/v1/reservations", json=booking()).json()["id"]

    early = client.post(f"/api/v1/reservations/{reservation_id}/complete")
    assert early.status_code == 409

    confirmed = client.post(f"/api/v1/reservations/{reservation_id}/confirm")
    assert confirmed.json()["status"] == "CONFIRMED"

    completed = client.post(f"/api/v1/reservations/{reservation_id}/complete")
    assert completed.json()["status"] == "COMPLETED"

    assert client.post(f"/api/v1/reservations/{reservation_id}/cancel").status_code == 409
