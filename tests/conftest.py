"""Shared fixtures for work item tests."""

from pathlib import Path

import pytest

from workitems.lib.config import Config, LockSettings
from workitems.store.memory import MemoryStore
from workitems.workflow.engine import StatusTransitionOrchestrator


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_orchestrator(store):
    """Factory for an orchestrator over the shared MemoryStore."""
    def make(**overrides) -> StatusTransitionOrchestrator:
        overrides.setdefault("locking", LockSettings(timeout=1.0, cascade_timeout=0.5))
        config = Config(database_path=Path("unused.db"), **overrides)
        return StatusTransitionOrchestrator(store, config=config)
    return make
