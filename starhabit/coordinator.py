# File: coordinator.py
"""Coordinator for StarHabit.

Wires the store and the managers together and is the single entry point a
host application (UI layer, CLI, tests) talks to:

- Entity CRUD for children, tasks and rewards (via data_builders)
- Lifecycle and ledger operations (delegated to the managers)
- The pull-based missed-occurrence check with its persisted watermark
- Whole-database import and export
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import os
from typing import Any

from . import const, data_builders as db
from .const import LogStatus
from .managers import EconomyManager, MissionCheckResult, MissionManager, SchedulerManager
from .store import StarHabitStore
from .type_defs import ChildData, ImportPayload, RewardData, TaskData
from .utils import dt_utils


@dataclass
class StarHabitConfig:
    """Runtime configuration.

    Attributes:
        storage_path: JSON file location (None = in-memory store)
        time_zone: IANA zone name for local-day decisions (None = device zone)
        default_backfill_days: Backfill look-back when no watermark exists
        max_backfill_days: Hard bound on the backfill look-back
        history_limit: Default number of ledger entries returned by history
    """

    storage_path: str | None = None
    time_zone: str | None = None
    default_backfill_days: int = const.DEFAULT_BACKFILL_DAYS
    max_backfill_days: int = const.MAX_BACKFILL_DAYS
    history_limit: int = const.DEFAULT_HISTORY_LIMIT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StarHabitConfig:
        """Build a config from STARHABIT_* environment variables."""
        environ = os.environ if environ is None else environ
        return cls(
            storage_path=environ.get(const.ENV_STORAGE_PATH) or None,
            time_zone=environ.get(const.ENV_TIME_ZONE) or None,
        )


class StarHabitCoordinator:
    """Coordinator for StarHabit.

    Owns the store and the managers. Managers are exposed as attributes
    (`economy`, `missions`, `scheduler`) for direct calls; the coordinator
    adds the operations that span several of them.
    """

    def __init__(
        self,
        config: StarHabitConfig | None = None,
        store: StarHabitStore | None = None,
    ) -> None:
        """Initialize the coordinator and load persisted data."""
        self.config = config or StarHabitConfig()
        if self.config.time_zone:
            dt_utils.set_default_timezone(self.config.time_zone)

        self.store = store or StarHabitStore(self.config.storage_path)
        self.store.load()

        self.economy = EconomyManager(self.store)
        self.missions = MissionManager(self.store, self.economy)
        self.scheduler = SchedulerManager(
            self.store,
            self.missions,
            default_backfill_days=self.config.default_backfill_days,
            max_backfill_days=self.config.max_backfill_days,
        )
        const.LOGGER.debug(
            "StarHabitCoordinator: Initialized (storage=%s, time zone=%s)",
            self.store.get_storage_path(),
            dt_utils.get_default_timezone(),
        )

    # -------------------------------------------------------------------------------------
    # Data access
    # -------------------------------------------------------------------------------------

    @property
    def children_data(self) -> dict[str, ChildData]:
        """Return the children dictionary."""
        return self.store.data[const.DATA_CHILDREN]

    @property
    def tasks_data(self) -> dict[str, TaskData]:
        """Return the tasks dictionary."""
        return self.store.data[const.DATA_TASKS]

    @property
    def rewards_data(self) -> dict[str, RewardData]:
        """Return the rewards dictionary."""
        return self.store.data[const.DATA_REWARDS]

    @property
    def last_missed_check_date(self) -> str | None:
        """Return the persisted backfill watermark."""
        return self.store.get_meta(const.DATA_META_LAST_MISSED_CHECK_DATE)

    def active_tasks(self) -> list[TaskData]:
        """Return tasks that are not archived."""
        return [
            dict(task)
            for task in self.tasks_data.values()
            if task.get(const.DATA_TASK_IS_ACTIVE) is not False
        ]

    # -------------------------------------------------------------------------------------
    # Children
    # -------------------------------------------------------------------------------------

    def add_child(self, user_input: dict[str, Any]) -> ChildData:
        """Create a child. Raises EntityValidationError on bad input."""
        child = db.build_child(user_input)
        with self.store.mutate() as data:
            data[const.DATA_CHILDREN][child[const.DATA_CHILD_ID]] = child
        const.LOGGER.info("Added child '%s'", child[const.DATA_CHILD_NAME])
        return dict(child)

    def update_child(
        self, child_id: str, user_input: dict[str, Any]
    ) -> ChildData | None:
        """Update a child's profile fields (never the balance)."""
        existing = self.children_data.get(child_id)
        if existing is None:
            const.LOGGER.warning("update_child: Child ID '%s' not found", child_id)
            return None
        child = db.build_child(user_input, existing=existing)
        with self.store.mutate() as data:
            data[const.DATA_CHILDREN][child_id] = child
        return dict(child)

    # -------------------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------------------

    def add_task(self, user_input: dict[str, Any]) -> TaskData:
        """Create a task. Raises EntityValidationError on bad input."""
        task = db.build_task(user_input)
        with self.store.mutate() as data:
            data[const.DATA_TASKS][task[const.DATA_TASK_ID]] = task
        const.LOGGER.info(
            "Added task '%s' (%s)",
            task[const.DATA_TASK_NAME],
            task[const.DATA_TASK_RECURRENCE_RULE],
        )
        return dict(task)

    def update_task(self, task_id: str, user_input: dict[str, Any]) -> TaskData | None:
        """Update a task; fields not in user_input are preserved."""
        existing = self.tasks_data.get(task_id)
        if existing is None:
            const.LOGGER.warning("update_task: Task ID '%s' not found", task_id)
            return None
        task = db.build_task(user_input, existing=existing)
        with self.store.mutate() as data:
            data[const.DATA_TASKS][task_id] = task
        return dict(task)

    def archive_task(self, task_id: str) -> bool:
        """Soft-delete a task (is_active=False). Its logs are kept."""
        if task_id not in self.tasks_data:
            const.LOGGER.warning("archive_task: Task ID '%s' not found", task_id)
            return False
        with self.store.mutate() as data:
            data[const.DATA_TASKS][task_id][const.DATA_TASK_IS_ACTIVE] = False
        const.LOGGER.info("Archived task '%s'", task_id)
        return True

    # -------------------------------------------------------------------------------------
    # Rewards
    # -------------------------------------------------------------------------------------

    def add_reward(self, user_input: dict[str, Any]) -> RewardData:
        """Create a catalog reward. Raises EntityValidationError on bad input."""
        reward = db.build_reward(user_input)
        with self.store.mutate() as data:
            data[const.DATA_REWARDS][reward[const.DATA_REWARD_ID]] = reward
        return dict(reward)

    def update_reward(
        self, reward_id: str, user_input: dict[str, Any]
    ) -> RewardData | None:
        """Update a catalog reward."""
        existing = self.rewards_data.get(reward_id)
        if existing is None:
            const.LOGGER.warning("update_reward: Reward ID '%s' not found", reward_id)
            return None
        reward = db.build_reward(user_input, existing=existing)
        with self.store.mutate() as data:
            data[const.DATA_REWARDS][reward_id] = reward
        return dict(reward)

    def delete_reward(self, reward_id: str) -> bool:
        """Remove a reward from the catalog. Past redemptions stay in the ledger."""
        if reward_id not in self.rewards_data:
            const.LOGGER.warning("delete_reward: Reward ID '%s' not found", reward_id)
            return False
        with self.store.mutate() as data:
            del data[const.DATA_REWARDS][reward_id]
        return True

    # -------------------------------------------------------------------------------------
    # Cross-manager operations
    # -------------------------------------------------------------------------------------

    def verify_task(self, log_id: str, *, now: datetime | None = None) -> bool:
        """Verify a log at its task's reward value and advance the streak.

        The streak only moves when this call actually changed the status, so
        re-verifying is a no-op for both balance and streak. The store lock is
        held throughout so concurrent calls cannot both see an unverified log.
        """
        with self.store.locked():
            log = self.store.data[const.DATA_LOGS].get(log_id)
            if log is None:
                const.LOGGER.warning("verify_task: Log ID '%s' not found", log_id)
                return False

            task = self.tasks_data.get(log[const.DATA_LOG_TASK_ID])
            if task is None:
                const.LOGGER.warning(
                    "verify_task: Task '%s' of log '%s' not found",
                    log[const.DATA_LOG_TASK_ID],
                    log_id,
                )
                return False

            already_verified = log.get(const.DATA_LOG_STATUS) == LogStatus.VERIFIED
            if not self.missions.verify(
                log_id,
                log[const.DATA_LOG_CHILD_ID],
                int(task.get(const.DATA_TASK_REWARD_VALUE) or 0),
                now=now,
            ):
                return False

            if not already_verified:
                self.scheduler.increment_streak(
                    task[const.DATA_TASK_ID],
                    self.tasks_data.values(),
                    self.store.data[const.DATA_LOGS].values(),
                    log_id,
                    now=now,
                )
        return True

    def run_missed_check(self, *, now: datetime | None = None) -> MissionCheckResult:
        """Run the missed-occurrence check against the store and save the watermark."""
        with self.store.locked():
            result = self.scheduler.check_missed_occurrences(
                self.children_data.values(),
                self.tasks_data.values(),
                self.store.data[const.DATA_LOGS].values(),
                self.last_missed_check_date,
                now=now,
            )
            if result.last_checked_date != self.last_missed_check_date:
                with self.store.mutate() as data:
                    data[const.DATA_META][const.DATA_META_LAST_MISSED_CHECK_DATE] = (
                        result.last_checked_date
                    )
        return result

    def get_history(self, child_id: str | None = None) -> list[dict[str, Any]]:
        """Return ledger history using the configured limit."""
        return self.economy.get_history(child_id, limit=self.config.history_limit)

    # -------------------------------------------------------------------------------------
    # Import / Export
    # -------------------------------------------------------------------------------------

    def import_data(self, payload: Any) -> None:
        """Validate a whole-database payload and replace the store with it.

        Raises:
            StarHabitValidationError: Payload failed validation; the store is
                left untouched
        """
        validated = db.validate_import_payload(payload)
        data = db.normalize_import_payload(validated)
        self.store.set_data(data)
        const.LOGGER.info(
            "Imported %d children, %d tasks, %d logs, %d transactions",
            len(data[const.DATA_CHILDREN]),
            len(data[const.DATA_TASKS]),
            len(data[const.DATA_LOGS]),
            len(data[const.DATA_TRANSACTIONS]),
        )

    def export_data(self) -> ImportPayload:
        """Return the whole database in the list-shaped import format."""
        data = self.store.data
        return {
            const.DATA_CHILDREN: [dict(item) for item in data[const.DATA_CHILDREN].values()],
            const.DATA_TASKS: [dict(item) for item in data[const.DATA_TASKS].values()],
            const.DATA_REWARDS: [dict(item) for item in data[const.DATA_REWARDS].values()],
            const.DATA_LOGS: [dict(item) for item in data[const.DATA_LOGS].values()],
            const.DATA_TRANSACTIONS: [
                dict(item) for item in data[const.DATA_TRANSACTIONS].values()
            ],
            const.IMPORT_LAST_MISSED_CHECK_DATE: self.last_missed_check_date,
        }
