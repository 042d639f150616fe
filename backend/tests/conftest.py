"""Shared pytest fixtures: reset database and fast round timing per test."""

import pytest
from sqlmodel import SQLModel

from ecogame import models  # noqa: F401
from ecogame.config import settings
from ecogame.db import engine
from ecogame.store import DocumentStore
from ecogame.sync import SyncHub


@pytest.fixture(autouse=True)
def reset_database():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def store():
    return DocumentStore(engine)


@pytest.fixture
def hub(store):
    return SyncHub(store, max_attempts=5)


@pytest.fixture
def fast_rounds(monkeypatch):
    monkeypatch.setattr(settings, "round_duration_ms", 600)
    monkeypatch.setattr(settings, "tick_interval_ms", 50)
    monkeypatch.setattr(settings, "min_participants", 2)
    monkeypatch.setattr(settings, "dilemma_selection", "sequential")
