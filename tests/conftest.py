"""
Shared fixtures: an in-process contact store and a directory on top of it.
"""

from __future__ import annotations

import pytest

from backend.app.directory.contacts import ContactDirectory
from backend.app.directory.store import InMemoryContactStore


@pytest.fixture
def store() -> InMemoryContactStore:
    return InMemoryContactStore()


@pytest.fixture
def directory(store) -> ContactDirectory:
    return ContactDirectory(store)
