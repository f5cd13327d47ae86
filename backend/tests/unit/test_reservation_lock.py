from datetime import date

import pytest

from lessonbook.core import reservation_lock as lock_module


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.store: dict = {}
        self.fail = fail

    def set(self, key, value, nx=False, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, key):
        self.store.pop(key, None)


LESSON_DAY = date(2030, 3, 5)


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()
    monkeypatch.setattr(lock_module, "_get_sync_redis", lambda: client)
    return client


def test_without_redis_lock_is_skipped():
    assert lock_module._get_sync_redis() is None
    with lock_module.reservation_lock("car-1", LESSON_DAY) as acquired:
        assert acquired is True


def test_lock_is_released_after_block(fake_redis):
    with lock_module.reservation_lock("car-1", LESSON_DAY) as acquired:
        assert acquired is True
        assert list(fake_redis.store) == ["lessonbook:lock:slot:car-1:2030-03-05"]
    assert fake_redis.store == {}


def test_contended_lock_keeps_holder(fake_redis):
    with lock_module.reservation_lock("car-1", LESSON_DAY):
        with lock_module.reservation_lock("car-1", LESSON_DAY) as second:
            assert second is False
        assert len(fake_redis.store) == 1


def test_other_resource_is_independent(fake_redis):
    with lock_module.reservation_lock("car-1", LESSON_DAY):
        with lock_module.reservation_lock("car-2", LESSON_DAY) as other:
            assert other is True


def test_redis_errors_degrade_to_no_lock(monkeypatch):
    monkeypatch.setattr(lock_module, "_get_sync_redis", lambda: FakeRedis(fail=True))

    assert lock_module.acquire_reservation_lock("car-1", LESSON_DAY) is True
