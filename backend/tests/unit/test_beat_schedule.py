from datetime import timedelta

from lessonbook.core.config import settings
import lessonbook.tasks  # noqa: F401  registers task modules
from lessonbook.tasks.beat_schedule import get_beat_schedule
from lessonbook.tasks.celery_app import celery_app


def test_hold_sweep_runs_on_short_interval():
    schedule = get_beat_schedule("production")

    sweep = schedule["sweep-expired-payment-holds"]
    assert sweep["task"] == "holds.sweep_expired"
    assert sweep["schedule"] == timedelta(seconds=settings.hold_sweep_interval_seconds)
    assert sweep["options"]["queue"] == "payments"


def test_development_polls_outbox_less_often():
    assert get_beat_schedule("development")["dispatch-outbox-events"]["schedule"] == timedelta(minutes=2)
    assert get_beat_schedule("production")["dispatch-outbox-events"]["schedule"] == timedelta(seconds=30)


def test_scheduled_tasks_are_registered():
    registered = set(celery_app.tasks.keys())

    for entry in get_beat_schedule("production").values():
        assert entry["task"] in registered


def test_task_routes():
    assert celery_app.conf.task_routes["holds.*"] == {"queue": "payments"}
    assert celery_app.conf.task_routes["outbox.*"] == {"queue": "notifications"}
