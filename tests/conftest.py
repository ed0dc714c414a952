"""
Shared fixtures for rollout controller tests
"""
import pytest
from unittest.mock import Mock

from clock import ManualClock
from deployment import RolloutController, FlagAdapter


@pytest.fixture
def clock():
    """Clock that only moves when the test advances it"""
    return ManualClock()


@pytest.fixture
def flag_adapter():
    """Flag adapter that records every call"""
    return Mock(spec=FlagAdapter)


@pytest.fixture
def controller(flag_adapter, clock):
    """Controller wired to a mock flag adapter and a manual clock"""
    controller = RolloutController(flag_adapter=flag_adapter, clock=clock)
    yield controller
    controller.shutdown()


@pytest.fixture
def events(controller):
    """Every event the controller publishes, in order"""
    received = []
    controller.subscribe(received.append)
    return received
