import pytest

import reconnectdb

from fake_driver import FakeClock, FakeDriver


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def db_url(db_path):
    return f"sqlite:///{db_path}"


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_conn(driver, clock):
    def factory(**kwargs):
        kwargs.setdefault("driver", driver)
        kwargs.setdefault("clock", clock)
        return reconnectdb.Connection("fake://db", "user", "secret", **kwargs)

    return factory
