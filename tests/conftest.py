"""Shared fixtures for StarHabit tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
import threading
from typing import Any

from dateutil import tz
from freezegun import freeze_time
import pytest

from starhabit import const
from starhabit.coordinator import StarHabitCoordinator
from starhabit.store import StarHabitStore
from starhabit.utils import dt_utils

# All tests run in a fixed zone with a real UTC offset so local-day bucketing
# differs from UTC bucketing.
TEST_TIME_ZONE = "America/New_York"
NEW_YORK = tz.gettz(TEST_TIME_ZONE)

# 2024-01-01 07:00 local (a Monday); the seeded scenario is created at this time
SCENARIO_CREATED_UTC = "2024-01-01 12:00:00"


def local_dt(
    year: int, month: int, day: int, hour: int = 12, minute: int = 0
) -> datetime:
    """Create an aware datetime in the test time zone."""
    return datetime(year, month, day, hour, minute, tzinfo=NEW_YORK)


@pytest.fixture(autouse=True)
def fixed_time_zone() -> Iterator[None]:
    """Pin the local time zone for every test and restore the device zone after."""
    dt_utils.set_default_timezone(TEST_TIME_ZONE)
    yield
    dt_utils.set_default_timezone(None)


@pytest.fixture
def store() -> StarHabitStore:
    """Return a loaded in-memory store."""
    memory_store = StarHabitStore()
    memory_store.load()
    return memory_store


@pytest.fixture
def coordinator(store: StarHabitStore) -> StarHabitCoordinator:
    """Return a coordinator over the in-memory store."""
    return StarHabitCoordinator(store=store)


@dataclass
class Scenario:
    """Ids of the seeded family."""

    coordinator: StarHabitCoordinator
    alice: str
    ben: str
    brush_teeth: str  # Daily, 5 stars, both children
    read_book: str  # Daily, up to 3 times a day, 2 stars, Alice only

    def task(self, task_id: str) -> dict[str, Any]:
        """Return the stored task record."""
        return self.coordinator.tasks_data[task_id]

    def balance(self, child_id: str) -> int:
        """Return the cached balance of a child."""
        return self.coordinator.economy.get_balance(child_id)


@pytest.fixture
def scenario(coordinator: StarHabitCoordinator) -> Scenario:
    """Seed two children and two daily tasks created on 2024-01-01."""
    with freeze_time(SCENARIO_CREATED_UTC):
        alice = coordinator.add_child({const.DATA_CHILD_NAME: "Alice"})
        ben = coordinator.add_child({const.DATA_CHILD_NAME: "Ben"})
        brush_teeth = coordinator.add_task(
            {
                const.DATA_TASK_NAME: "Brush teeth",
                const.DATA_TASK_REWARD_VALUE: 5,
                const.DATA_TASK_RECURRENCE_RULE: "FREQ=DAILY",
                const.DATA_TASK_ASSIGNED_TO: [
                    alice[const.DATA_CHILD_ID],
                    ben[const.DATA_CHILD_ID],
                ],
            }
        )
        read_book = coordinator.add_task(
            {
                const.DATA_TASK_NAME: "Read a chapter",
                const.DATA_TASK_REWARD_VALUE: 2,
                const.DATA_TASK_RECURRENCE_RULE: "Daily",
                const.DATA_TASK_MAX_COMPLETIONS_PER_DAY: 3,
                const.DATA_TASK_ASSIGNED_TO: [alice[const.DATA_CHILD_ID]],
            }
        )

    return Scenario(
        coordinator=coordinator,
        alice=alice[const.DATA_CHILD_ID],
        ben=ben[const.DATA_CHILD_ID],
        brush_teeth=brush_teeth[const.DATA_TASK_ID],
        read_book=read_book[const.DATA_TASK_ID],
    )


def add_task_on(
    coordinator: StarHabitCoordinator, created_utc: str, **fields: Any
) -> dict[str, Any]:
    """Create a task as if the admin added it at `created_utc`."""
    with freeze_time(created_utc):
        return coordinator.add_task(fields)


def gate_mutations(
    monkeypatch: pytest.MonkeyPatch, store: StarHabitStore, parties: int
) -> None:
    """Hold every mutate() caller until `parties` threads have arrived.

    Callers meet before the store lock is taken, so any state they read
    before calling mutate() is read by all of them first.
    """
    barrier = threading.Barrier(parties, timeout=5)
    original = store.mutate

    @contextmanager
    def gated() -> Iterator[dict[str, Any]]:
        barrier.wait()
        with original() as data:
            yield data

    monkeypatch.setattr(store, "mutate", gated)


def run_concurrently(*calls: Callable[[], Any]) -> list[Any]:
    """Run each call on its own thread and return the results in order."""
    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        futures = [executor.submit(call) for call in calls]
        return [future.result() for future in futures]
