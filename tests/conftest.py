import pytest

from fakes import FakeClock, FakeUpstream


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_upstream():
    return FakeUpstream()
