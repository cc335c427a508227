import pytest
from fastapi.testclient import TestClient

from trustcore.api import create_app
from trustcore.rate_limit import RateLimiter

from support import FakeClock, make_core


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def core(clock):
    core = make_core(clock)
    yield core
    core.close()


@pytest.fixture
def limiter():
    return RateLimiter(rpm=1000)


@pytest.fixture
def client(core, limiter):
    return TestClient(create_app(core, limiter))
