from datetime import timedelta

from lessonbook.core.timezone_utils import get_school_today


def _create_template(client, day_of_week: int, start: str = "09:00", end: str = "17:00", **extra):
    return client.post(
        "/api/v1/schedule/templates",
        json={"day_of_week": day_of_week, "start_time": start, "end_time": end, **extra},
    )


class TestScheduleRoutes:
    def test_create_and_list_templates(self, client):
        response = _create_template(client, 1, buffer_minutes=15)

        assert response.status_code == 201
        body = response.json()
        assert body["day_of_week"] == 1
        assert body["start_time"] == "09:00:00"
        assert body["buffer_minutes"] == 15
        assert body["is_active"] is True

        listed = client.get("/api/v1/schedule/templates")
        assert [t["id"] for t in listed.json()] == [body["id"]]

    def test_inverted_template_is_rejected(self, client):
        response = _create_template(client, 1, start="17:00", end="09:00")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_malformed_time_is_rejected(self, client):
        response = _create_template(client, 1, start="nine")

        assert response.status_code == 422

    def test_unknown_fields_are_rejected(self, client):
        response = _create_template(client, 1, colour="blue")

        assert response.status_code == 422

    def test_deactivated_template_is_hidden_by_default(self, client):
        template_id = _create_template(client, 2).json()["id"]

        deactivated = client.post(f"/api/v1/schedule/templates/{template_id}/deactivate")

        assert deactivated.status_code == 200
        assert deactivated.json()["is_active"] is False
        assert client.get("/api/v1/schedule/templates").json() == []
        everything = client.get("/api/v1/schedule/templates", params={"include_inactive": True})
        assert [t["id"] for t in everything.json()] == [template_id]

    def test_deactivate_unknown_template(self, client):
        response = client.post("/api/v1/schedule/templates/missing/deactivate")

        assert response.status_code == 404

    def test_blocked_range_lifecycle(self, client, lesson_date):
        created = client.post(
            "/api/v1/schedule/blocked",
            json={"date": lesson_date.isoformat(), "reason": "Inspection"},
        )

        assert created.status_code == 201
        assert created.json()["start_time"] is None

        removed = client.delete(f"/api/v1/schedule/blocked/{created.json()['id']}")
        assert removed.status_code == 204
        assert client.delete(f"/api/v1/schedule/blocked/{created.json()['id']}").status_code == 404

    def test_extra_window_lifecycle(self, client, lesson_date):
        created = client.post(
            "/api/v1/schedule/extra",
            json={
                "date": lesson_date.isoformat(),
                "start_time": "18:00",
                "end_time": "20:00",
                "reserved_for_identity": "cust-9",
            },
        )

        assert created.status_code == 201
        assert created.json()["reserved_for_identity"] == "cust-9"
        assert client.delete(f"/api/v1/schedule/extra/{created.json()['id']}").status_code == 204


class TestAvailabilityRoutes:
    def test_day_windows(self, client, weekday_templates, lesson_date):
        response = client.get(
            f"/api/v1/availability/{lesson_date.isoformat()}", params={"resource_id": "car-1"}
        )

        assert response.status_code == 200
        assert response.json() == {
            "date": lesson_date.isoformat(),
            "windows": [
                {"start": "09:00", "end": "17:00", "duration_minutes": 480, "buffer_minutes": 0}
            ],
        }

    def test_day_slots(self, client, weekday_templates, lesson_date):
        response = client.get(
            f"/api/v1/availability/{lesson_date.isoformat()}",
            params={"resource_id": "car-1", "duration_minutes": 60},
        )

        starts = [w["start"] for w in response.json()["windows"]]
        assert starts == ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00"]

    def test_reserved_extra_window_needs_identity(self, client, lesson_date):
        client.post(
            "/api/v1/schedule/extra",
            json={
                "date": lesson_date.isoformat(),
                "start_time": "18:00",
                "end_time": "19:30",
                "reserved_for_identity": "cust-9",
            },
        )
        url = f"/api/v1/availability/{lesson_date.isoformat()}"

        assert client.get(url).json()["windows"] == []
        assert client.get(url, params={"identity": "cust-9"}).json()["windows"][0]["end"] == "19:30"

    def test_unparsable_date_has_no_windows(self, client, weekday_templates):
        response = client.get("/api/v1/availability/not-a-date")

        assert response.status_code == 200
        assert response.json()["windows"] == []

    def test_past_date_has_no_windows(self, client, weekday_templates):
        yesterday = get_school_today() - timedelta(days=1)

        assert client.get(f"/api/v1/availability/{yesterday.isoformat()}").json()["windows"] == []

    def test_range(self, client, weekday_templates, lesson_date):
        end = lesson_date + timedelta(days=5)

        response = client.get(
            "/api/v1/availability",
            params={"start_date": lesson_date.isoformat(), "end_date": end.isoformat()},
        )

        assert response.status_code == 200
        days = response.json()["days"]
        assert len(days) == 6
        # lesson_date is a Tuesday, so +4 and +5 are Saturday and Sunday
        assert days[(lesson_date + timedelta(days=4)).isoformat()] == []
        assert days[(lesson_date + timedelta(days=5)).isoformat()] == []
        assert days[lesson_date.isoformat()][0]["start"] == "09:00"

    def test_inverted_range_is_rejected(self, client, lesson_date):
        response = client.get(
            "/api/v1/availability",
            params={
                "start_date": lesson_date.isoformat(),
                "end_date": (lesson_date - timedelta(days=1)).isoformat(),
            },
        )

        assert response.status_code == 400
