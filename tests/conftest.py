"""Root conftest - shared settings, in-memory store and recording sleep.

Invariants:
    - No test touches a real Firestore project or opens a socket
    - Settings built from explicit kwargs, never from a developer's .env
"""

import pytest

from immuno_api.config import Settings
from tests.fakes import FakeStore, RecordingSleep, make_settings


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
