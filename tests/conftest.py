"""Shared fixtures: a file-backed SQLite store per test and the services over it."""

import os

# clubrides.database builds its engine at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from clubrides.config import Settings
from clubrides.database import build_engine, get_store, make_session_factory
from clubrides.dependencies import get_settings
from clubrides.models.base import Base
from clubrides.models.membership import ClubMembership
from clubrides.models.participation import Participation  # noqa: F401
from clubrides.models.ride import Ride  # noqa: F401
from clubrides.schemas.actor import Actor
from clubrides.services.authorization import AuthorizationEngine
from clubrides.services.membership_directory import MembershipDirectory
from clubrides.services.participation import ParticipationCoordinator
from clubrides.services.ride_lifecycle import RideLifecycleManager
from clubrides.store.partitioned import PartitionedStore

CLUB_ID = "club-1"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'clubrides.db'}"


@pytest.fixture
def engine(database_url):
    engine = build_engine(database_url, 30000)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings(database_url):
    return Settings(database_url=database_url, run_migrations_on_startup=False)


@pytest.fixture
def store(engine):
    return PartitionedStore(make_session_factory(engine))


@pytest.fixture
def authorization(store):
    return AuthorizationEngine(MembershipDirectory(store))


@pytest.fixture
def lifecycle(store, authorization, settings):
    return RideLifecycleManager(store, authorization, settings)


@pytest.fixture
def participation(store, authorization, settings):
    return ParticipationCoordinator(store, authorization, settings)


@pytest.fixture
def add_member(store):
    """Seed a membership row (the membership service itself lives outside this repo)."""

    def _add(user_id, role="member", status="active", club_id=CLUB_ID):
        store.put(
            ClubMembership,
            {"user_id": user_id, "club_id": club_id, "role": role, "status": status},
        )
        return Actor(user_id=user_id)

    return _add


@pytest.fixture
def ride_payload():
    def _payload(days_ahead=7, **overrides):
        start = datetime.now(timezone.utc) + timedelta(days=days_ahead)
        payload = {
            "title": "Sunday hill loop",
            "description": "Steady pace, regroup at the top.",
            "rideType": "training",
            "difficulty": "intermediate",
            "startDateTime": start.isoformat(),
            "estimatedDuration": 120,
            "meetingPoint": {"name": "Cafe Velo", "address": "1 Main St"},
        }
        payload.update(overrides)
        return payload

    return _payload


@pytest.fixture
def published_ride(lifecycle, add_member, ride_payload):
    """Factory for a published ride owned by a ride_captain."""

    def _create(max_participants=None, allow_waitlist=True, captain_id="captain", days_ahead=7):
        captain = add_member(captain_id, role="ride_captain")
        payload = ride_payload(
            days_ahead=days_ahead,
            maxParticipants=max_participants,
            allowWaitlist=allow_waitlist,
            publishImmediately=True,
        )
        return lifecycle.create_ride(payload, captain, CLUB_ID)

    return _create


@pytest.fixture
def client(store, settings):
    from clubrides.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()
