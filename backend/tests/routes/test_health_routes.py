def test_live(client):
    response = client.get("/live")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert response.headers["cache-control"] == "no-store"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "environment": "test", "database": True}


def test_root(client):
    body = client.get("/").json()

    assert body["version"] == "1.0.0"
    assert body["docs"] == "/docs"


def test_prometheus_metrics(client, weekday_templates, held_reservation):
    response = client.get("/metrics/prometheus")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "lessonbook_prometheus_scrapes_total" in response.text
