"""Fixtures for the dispatcher and the simulated gateway."""

import pytest

from fleetspine.dispatch import Dispatcher, SimulatedAmrGateway


@pytest.fixture
def gateway(db_conn, settings, clock):
    return SimulatedAmrGateway(db_conn, settings=settings, clock=clock)


@pytest.fixture
def dispatcher(queue_service, gateway, settings, clock):
    return Dispatcher(queue_service, gateway, settings=settings, clock=clock)
