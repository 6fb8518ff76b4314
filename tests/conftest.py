"""Общие fixtures для тестов Defense Line."""

import pytest

from defense_line.core.config import DefenseConfig
from defense_line.engine.state_machine import DefenseEngine
from defense_line.entrypoints.gateway import ProtocolGateway
from tests.helpers import OWNER, REFERENCE_PRICE, FakeClock


@pytest.fixture
def clock():
    """Fixture для управляемых часов."""
    return FakeClock()


@pytest.fixture
def config():
    """Конфигурация по умолчанию (owner = OWNER, окно 1 час)."""
    return DefenseConfig(owner=OWNER, staleness_window_sec=3600)


@pytest.fixture
def engine(config, clock):
    """Движок в MONITORING с defense line 1600 USD."""
    return DefenseEngine(reference_price=REFERENCE_PRICE, config=config, clock=clock)


@pytest.fixture
def gateway(engine):
    """Gateway поверх engine."""
    return ProtocolGateway(engine)
