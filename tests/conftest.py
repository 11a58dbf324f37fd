# tests/conftest.py
import pytest

from core.cancel import CancelToken
from engine.poller import EventPoller
from ledger.simulation import SimulationLedger
from tests.scenario import CHALLENGER, CONTRACTS, FakeClock, MiningSleep


@pytest.fixture
def contracts():
    return CONTRACTS


@pytest.fixture
def ledger():
    return SimulationLedger(CHALLENGER)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poller(ledger, clock):
    """Poller on a fake clock; each sleep mines one block."""
    return EventPoller(ledger, poll_interval=0.2, clock=clock, sleep=MiningSleep(clock, ledger))


@pytest.fixture
def cancel():
    return CancelToken()
