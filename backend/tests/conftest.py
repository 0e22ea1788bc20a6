"""
Pytest Configuration and Fixtures

This file contains shared fixtures and configuration for all tests.
"""

import pytest

from opcore.config.settings import Settings
from opcore.domain.models import Agency, Team, User
from opcore.services.session import OperationSession

from tests.fakes import FakeRemoteStore, FrozenClock


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment"""
    return Settings(
        _env_file=None,
        mongo_db="opcore_test",
        google_maps_api_key="",
        reconcile_max_concurrency=4,
        reconcile_timeout_seconds=None,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def agency() -> Agency:
    return Agency(name="County Sheriff")


@pytest.fixture
def team(agency) -> Team:
    return Team(agency_id=agency.id, name="Narcotics Unit")


@pytest.fixture
def case_agent(store, team, agency) -> User:
    """U1: creates operations and therefore acts as case agent"""
    return store.add_user(User(
        email="u1@example.com", team_id=team.id, agency_id=agency.id, callsign="Alpha-1"
    ))


@pytest.fixture
def member(store, team, agency) -> User:
    """U2"""
    return store.add_user(User(
        email="u2@example.com", team_id=team.id, agency_id=agency.id, callsign="Bravo-2"
    ))


@pytest.fixture
def outsider(store, team, agency) -> User:
    """U3: never joined anything"""
    return store.add_user(User(
        email="u3@example.com", team_id=team.id, agency_id=agency.id, full_name="Charlie Three"
    ))


@pytest.fixture
def session(store, settings, clock) -> OperationSession:
    return OperationSession(store, settings=settings, clock=clock)
