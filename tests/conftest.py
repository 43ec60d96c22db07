import pytest

from tests.fakes import FakeDispatcher, FakeRedis, FakeRetentionLog


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher()


@pytest.fixture
def fake_retention_log():
    return FakeRetentionLog()
