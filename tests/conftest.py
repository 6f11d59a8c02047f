import pytest

from fakes import FakeLedger, SleepRecorder


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()
