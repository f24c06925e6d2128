"""Base manager class for StarHabit managers."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from .. import const
from ..utils.dt_utils import as_local, dt_now_local

if TYPE_CHECKING:
    from ..store import StarHabitStore
    from ..type_defs import ChildData, RewardData, TaskData, TaskLogData


class MutationAborted(Exception):
    """Raised inside a mutate() block to discard the working copy.

    Managers re-check state on the working copy (under the store lock) and
    raise this to leave without writing. `result` is what the public
    operation returns to its caller.
    """

    def __init__(self, result: Any = False) -> None:
        """Initialize MutationAborted."""
        super().__init__(result)
        self.result = result


class BaseManager:
    """Base class for all StarHabit managers.

    Provides:
    - Access to the shared store
    - Record lookups that work on either the live data or a mutate() copy
    - Resolution of the optional `now` override used by every operation

    Data Persistence:
    - Every state change happens inside one `self._store.mutate()` block, so
      each public operation is a single atomic write.
    - Lookup helpers accept the working copy yielded by mutate(); records
      fetched from it may be edited in place.
    """

    def __init__(self, store: StarHabitStore) -> None:
        """Initialize manager.

        Args:
            store: Shared store holding all StarHabit data
        """
        self._store = store

    @property
    def data(self) -> dict[str, Any]:
        """Return the live (read-only) store data."""
        return self._store.data

    @staticmethod
    def _resolve_now(now: datetime | None) -> datetime:
        """Return `now` as an aware local datetime, defaulting to the clock."""
        return as_local(now) if now is not None else dt_now_local()

    def _get_child(
        self, child_id: str, data: dict[str, Any] | None = None
    ) -> ChildData | None:
        """Get child data by ID, or None if not found."""
        source = data if data is not None else self.data
        return source[const.DATA_CHILDREN].get(child_id)

    def _get_task(
        self, task_id: str, data: dict[str, Any] | None = None
    ) -> TaskData | None:
        """Get task data by ID, or None if not found."""
        source = data if data is not None else self.data
        return source[const.DATA_TASKS].get(task_id)

    def _get_reward(
        self, reward_id: str, data: dict[str, Any] | None = None
    ) -> RewardData | None:
        """Get reward data by ID, or None if not found."""
        source = data if data is not None else self.data
        return source[const.DATA_REWARDS].get(reward_id)

    def _get_log(
        self, log_id: str, data: dict[str, Any] | None = None
    ) -> TaskLogData | None:
        """Get log data by ID, or None if not found."""
        source = data if data is not None else self.data
        return source[const.DATA_LOGS].get(log_id)
