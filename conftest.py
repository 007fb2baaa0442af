import pytest

from infrastructure.container import container
from infrastructure.events import get_event_bus, reset_event_bus


@pytest.fixture(autouse=True)
def fresh_services():
    """Each test gets its own mock gateway and in-memory event bus."""
    container.configure_for_testing()
    reset_event_bus()
    yield
    container.reset()
    reset_event_bus()


@pytest.fixture
def gateway():
    return container.payment()


@pytest.fixture
def event_bus():
    return get_event_bus()
