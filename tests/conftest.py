"""
Shared pytest fixtures for the CivicDesk test suite.

Provides an in-memory complaint store with a controllable clock, a scripted
classification stub, and an httpx AsyncClient wired to the FastAPI app with
its dependencies overridden. No network, database, or model access needed.
"""

import sys
import asyncio
from pathlib import Path
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
import httpx

# Ensure the package is importable without an editable install
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from civicdesk import app as app_module
from civicdesk.app import app, limiter
from civicdesk.models import Officer
from civicdesk.persistence import MemoryKeyValueStore
from civicdesk.store import ComplaintStore
from civicdesk.suggestion import SuggestionEngine


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StubClassifier:
    """Returns whatever the test scripts; can also raise or stall."""

    def __init__(self, response=None, image_response=None, error: Exception = None, delay: float = 0):
        self.response = response if response is not None else {
            "suggestedCategory": "Other", "priority": "Medium", "reasoning": "stub"}
        self.image_response = image_response if image_response is not None else {"suggestedCategory": "Other"}
        self.error = error
        self.delay = delay
        self.calls = []

    async def _respond(self, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return payload

    async def classify(self, description, location, photo=None, officers=()):
        self.calls.append({"description": description, "location": location, "photo": photo,
                           "officers": list(officers)})
        return await self._respond(self.response)

    async def categorize_image(self, photo):
        self.calls.append({"photo": photo})
        return await self._respond(self.image_response)


ROSTER = [
    Officer(id="san-1", name="Dev Malhotra", department="Sanitation", location="District 1", active_cases=3),
    Officer(id="san-2", name="Ritu Bansal", department="Sanitation", location="District 2", active_cases=5),
    Officer(id="pw-1", name="Omar Haddad", department="Public Works", location="District 1", active_cases=2),
    Officer(id="pw-2", name="Grace Okafor", department="Public Works", location="District 3", active_cases=4),
    Officer(id="tr-1", name="Tomas Lindqvist", department="Transportation", location="City Wide", active_cases=6),
    Officer(id="pr-1", name="Anjali Rao", department="Parks & Rec", location="District 2", active_cases=1),
]

CITIZEN = {"X-User-Id": "citizen-a", "X-User-Role": "citizen"}
OTHER_CITIZEN = {"X-User-Id": "citizen-b", "X-User-Role": "citizen"}
ADMIN = {"X-User-Id": "admin-a", "X-User-Role": "admin"}


def make_draft(**overrides) -> dict:
    draft = {
        "category": "Pothole",
        "description": "Large pothole in the left lane near the bus stop.",
        "location": "Elm St",
        "photos": ["https://img.example.org/pothole.jpg"],
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 7, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv, clock):
    return ComplaintStore(kv, clock=clock)


@pytest.fixture
def classifier():
    return StubClassifier()


@pytest.fixture
def engine(classifier):
    return SuggestionEngine(classifier, timeout=1.0)


@pytest.fixture
def roster():
    return list(ROSTER)


class StubGeocoder:
    def __init__(self, result=("221B Baker Street, London", True)):
        self.result = result

    async def reverse(self, latitude, longitude):
        return self.result


@pytest_asyncio.fixture
async def client(store, engine, roster):
    """In-process httpx AsyncClient against the app with test doubles injected."""
    limiter.enabled = False

    async def _store():
        return store

    async def _engine():
        return engine

    async def _roster():
        return list(roster)

    async def _geocoder():
        return StubGeocoder()

    app.dependency_overrides[app_module.get_store] = _store
    app.dependency_overrides[app_module.get_engine] = _engine
    app.dependency_overrides[app_module.get_roster] = _roster
    app.dependency_overrides[app_module.get_geocoder] = _geocoder
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
    limiter.enabled = True
