from datetime import datetime, timedelta, timezone

import pytest

from app.metrics import MetricsRegistry, register_default_metrics
from app.tickets.engine import TicketLifecycleEngine
from app.tickets.memory import (
    InMemoryCategoryRegistry,
    InMemoryIdentityProvider,
    InMemoryNotificationSink,
    InMemoryTicketStore,
)
from app.tickets.models import Category, Role, User
from app.tickets.notifications import NotificationDispatcher

REQUESTER = User(id="rita", display_name="Rita Requester", role=Role.REQUESTER)
OTHER_REQUESTER = User(id="oscar", display_name="Oscar Requester", role=Role.REQUESTER)
AGENT = User(id="alex", display_name="Alex Agent", role=Role.AGENT)
SECOND_AGENT = User(id="bea", display_name="Bea Agent", role=Role.AGENT)
ADMIN = User(id="ada", display_name="Ada Admin", role=Role.ADMIN)

HARDWARE = Category(id="hardware", name="Hardware")
LAPTOPS = Category(id="laptops", name="Laptops", parent_id="hardware", watcher_ids=("bea",))


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self) -> None:
        self.current = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def metrics():
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def identity():
    return InMemoryIdentityProvider([REQUESTER, OTHER_REQUESTER, AGENT, SECOND_AGENT, ADMIN])


@pytest.fixture
def categories():
    registry = InMemoryCategoryRegistry()
    registry.add_category(HARDWARE)
    registry.add_category(LAPTOPS)
    return registry


@pytest.fixture
def sink():
    return InMemoryNotificationSink()


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def dispatcher(identity, categories, sink, clock, metrics):
    return NotificationDispatcher(identity, categories, sink, clock=clock, metrics=metrics)


@pytest.fixture
def engine(store, identity, categories, dispatcher, clock, metrics):
    return TicketLifecycleEngine(store, identity, categories, dispatcher, clock=clock, metrics=metrics)
