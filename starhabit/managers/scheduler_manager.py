"""Scheduler Manager - Missed-occurrence detection and streak bookkeeping.

Pull-based: the host calls check_missed_occurrences() whenever the app comes
to the foreground. One call:

1. Backfills FAILED logs for due occurrences on days nobody observed
   (only when the watermark is absent or not today)
2. Fails today's occurrences whose expiry_time has passed
3. Persists everything, with the streak resets, in one store write

Planning is done by MissionEngine (pure); this manager only gathers the
inputs and writes the result through MissionManager.log_failed_batch.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from .. import const
from ..engines.mission_engine import FailureItem, MissionEngine
from .base_manager import BaseManager

if TYPE_CHECKING:
    from ..store import StarHabitStore
    from ..type_defs import ChildData, ISODate, TaskData, TaskLogData
    from .mission_manager import MissionManager


@dataclass
class MissionCheckResult:
    """Outcome of one missed-occurrence check.

    Attributes:
        new_logs: FAILED logs written by this call
        updated_tasks: All tasks, with streak resets applied
        last_checked_date: The new watermark (today); the host persists it
    """

    new_logs: list[TaskLogData] = field(default_factory=list)
    updated_tasks: list[TaskData] = field(default_factory=list)
    last_checked_date: ISODate = ""


class SchedulerManager(BaseManager):
    """Manager for backfill, same-day expiry and streaks."""

    def __init__(
        self,
        store: StarHabitStore,
        missions: MissionManager,
        *,
        default_backfill_days: int = const.DEFAULT_BACKFILL_DAYS,
        max_backfill_days: int = const.MAX_BACKFILL_DAYS,
    ) -> None:
        """Initialize the SchedulerManager.

        Args:
            store: Shared store
            missions: MissionManager used for the batch failure write
            default_backfill_days: Look-back when no watermark exists
            max_backfill_days: Hard bound on the look-back
        """
        super().__init__(store)
        self._missions = missions
        self._default_backfill_days = default_backfill_days
        self._max_backfill_days = max_backfill_days

    def check_missed_occurrences(
        self,
        children: Iterable[ChildData],
        tasks: Iterable[TaskData],
        logs: Iterable[TaskLogData],
        last_checked_date: ISODate | None = None,
        *,
        now: datetime | None = None,
    ) -> MissionCheckResult:
        """Find and persist missed occurrences.

        Args:
            children: Current children (stale task assignments are skipped)
            tasks: All tasks
            logs: All logs (used to avoid duplicates)
            last_checked_date: Watermark "YYYY-MM-DD" from the previous run
            now: Override for the current time (tests)

        Returns:
            MissionCheckResult; last_checked_date is always today
        """
        now = self._resolve_now(now)
        today = now.date()
        tasks = list(tasks)
        child_ids = {child[const.DATA_CHILD_ID] for child in children}
        covered = MissionEngine.index_logs(logs)
        planned: list[FailureItem] = []

        if MissionEngine.is_reset_needed(last_checked_date, today):
            days = MissionEngine.backfill_window(
                last_checked_date,
                today,
                self._default_backfill_days,
                self._max_backfill_days,
            )
            const.LOGGER.debug(
                "SchedulerManager: Backfill scan of %d day(s) since watermark %s",
                len(days),
                last_checked_date,
            )
            planned.extend(MissionEngine.plan_backfill(child_ids, tasks, days, covered))

        planned.extend(MissionEngine.plan_expiry(child_ids, tasks, now, covered))

        new_logs: list[TaskLogData] = []
        reset_tasks: list[TaskData] = []
        if planned:
            new_logs, reset_tasks = self._missions.log_failed_batch(planned)

        reset_by_id = {task[const.DATA_TASK_ID]: task for task in reset_tasks}
        updated_tasks = [
            reset_by_id.get(task[const.DATA_TASK_ID], task) for task in tasks
        ]

        if new_logs:
            const.LOGGER.info(
                "SchedulerManager: Recorded %d missed occurrence(s) across %d task(s)",
                len(new_logs),
                len(reset_by_id),
            )

        return MissionCheckResult(
            new_logs=new_logs,
            updated_tasks=updated_tasks,
            last_checked_date=today.isoformat(),
        )

    def increment_streak(
        self,
        task_id: str,
        tasks: Iterable[TaskData],
        logs: Iterable[TaskLogData],
        current_log_id: str,
        *,
        now: datetime | None = None,
    ) -> list[TaskData]:
        """Advance a task's streak by one for today's success.

        Skipped when another log of the task already counted a VERIFIED or
        EXCUSED success today, so repeatable tasks advance at most once a day.

        Returns:
            The task list with the updated task replaced (unchanged when the
            task is unknown or the increment was skipped)
        """
        now = self._resolve_now(now)
        tasks = list(tasks)
        index = next(
            (
                position
                for position, task in enumerate(tasks)
                if task.get(const.DATA_TASK_ID) == task_id
            ),
            None,
        )
        if index is None:
            const.LOGGER.debug(
                "SchedulerManager.increment_streak: Task '%s' not found", task_id
            )
            return tasks

        if not MissionEngine.should_increment_streak(
            task_id, logs, current_log_id, now.date()
        ):
            const.LOGGER.debug(
                "SchedulerManager.increment_streak: Task '%s' already counted today",
                task_id,
            )
            return tasks

        current_streak, best_streak = MissionEngine.calculate_streak_increment(
            tasks[index]
        )
        if task_id in self.data[const.DATA_TASKS]:
            with self._store.mutate() as data:
                stored = data[const.DATA_TASKS][task_id]
                stored[const.DATA_TASK_CURRENT_STREAK] = current_streak
                stored[const.DATA_TASK_BEST_STREAK] = best_streak

        tasks[index] = {
            **tasks[index],
            const.DATA_TASK_CURRENT_STREAK: current_streak,
            const.DATA_TASK_BEST_STREAK: best_streak,
        }
        return tasks
