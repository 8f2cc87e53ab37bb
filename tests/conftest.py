"""Shared fixtures for the task engine tests."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from task_engine.store import TaskStore
from task_engine.workflow import TaskWorkflow

NOW = datetime(2024, 1, 11, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that stays put until a test moves it."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def temp_dir():
    """Create a temporary data directory."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def store(temp_dir, clock):
    return TaskStore(temp_dir, clock=clock)


@pytest.fixture
def workflow(store, clock):
    return TaskWorkflow(store, clock=clock)
