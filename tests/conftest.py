import pytest

from tests.fakes import FakeSleep, FakeStore, FakeThread


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_thread() -> FakeThread:
    return FakeThread()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()
