# tests/conftest.py

from datetime import timedelta

import pytest

from trainhub.schemas.sessions import SessionSpec
from trainhub.services.aggregation import FlexiblePolicy, SessionAggregator, StrictThresholdPolicy
from trainhub.services.bookings import BookingManager
from trainhub.services.cache import MemoryCache
from trainhub.services.remote import LocalChangeFeed
from trainhub.services.sessions import SessionService
from trainhub.services.sync import Reconciler
from trainhub.services.trainers import TrainerCatalog
from trainhub.utils.clock import utc_now

from .fakes import FakeRemoteStore


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def feed():
    return LocalChangeFeed()


@pytest.fixture
def remote(feed):
    return FakeRemoteStore(feed=feed)


@pytest.fixture
def reconciler(cache, remote):
    return Reconciler(cache, remote)


@pytest.fixture
def manager(cache, remote, reconciler):
    return BookingManager(cache, remote, reconciler, cache_ttl=0)


@pytest.fixture
def catalog():
    return TrainerCatalog()


@pytest.fixture
def strict_aggregator(cache, remote, catalog):
    return SessionAggregator(cache, remote, catalog, StrictThresholdPolicy(min_students=5, max_students=10))


@pytest.fixture
def flexible_aggregator(cache, remote, catalog):
    return SessionAggregator(cache, remote, catalog, FlexiblePolicy(min_students=1, max_students=10))


@pytest.fixture
def session_service(cache, remote, reconciler):
    return SessionService(cache, remote, reconciler, cache_ttl=0)


@pytest.fixture
def spec():
    return SessionSpec(
        title="React patterns",
        description="Hooks and state management",
        scheduled_at=utc_now() + timedelta(days=3),
        duration=90,
    )
