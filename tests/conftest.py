from datetime import datetime, timedelta, timezone

import pytest

from database import MemoryKeyValueStore
from store import Store


class FakeClock:
    """Controllable replacement for Store.clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryKeyValueStore()


@pytest.fixture
def store(backend, clock):
    return Store(backend, clock=clock)


@pytest.fixture
def owner(store):
    return store.get_user_by_id("user_owner")


@pytest.fixture
def admin(store):
    return store.get_user_by_id("user_admin1")


@pytest.fixture
def make_user(store):
    def _make(username, enrollment_year=2024, class_number=5, nickname=None):
        user = store.register(
            username=username,
            nickname=nickname or username,
            enrollment_year=enrollment_year,
            class_number=class_number,
            password="secret123",
        )
        assert user, user
        return user
    return _make


@pytest.fixture
def make_post(store):
    def _make(author, title="title", content="content", tag="其他", visibility="school"):
        post = store.create_post(author.id, title=title, content=content, tag=tag, visibility=visibility)
        assert post, post
        return post
    return _make
