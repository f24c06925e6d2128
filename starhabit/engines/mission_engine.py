"""Mission Engine - Pure logic for occurrence planning and the log lifecycle.

This engine provides stateless, pure Python functions for:
- The occurrence state machine (valid log status transitions)
- Due-date evaluation of a task on a local day
- Backfill planning across unobserved days
- Same-day expiry planning
- Streak guard (at most one increment per task per local day)

ARCHITECTURE: This is a pure logic engine with NO store access.
All functions are static methods that operate on passed-in data.
State management belongs in SchedulerManager and MissionManager.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, ClassVar

from .. import const
from ..const import Frequency, LogStatus
from ..utils.dt_utils import (
    dt_add_days,
    dt_date_range,
    dt_local_date_of,
    dt_minutes_of_day,
    dt_parse_date,
    parse_time_of_day,
)
from .recurrence_engine import RecurrenceEngine

if TYPE_CHECKING:
    from ..type_defs import TaskData, TaskLogData

# Implicit state of an occurrence before any log exists
STATE_ACTIVE = "ACTIVE"

# (child_id, task_id, local day) - the idempotency key of an occurrence
OccurrenceKey = tuple[str, str, date]


# =============================================================================
# FAILURE ITEM DATA STRUCTURE
# =============================================================================


@dataclass(frozen=True)
class FailureItem:
    """One missed occurrence queued for a FAILED log.

    Attributes:
        child_id: The child who missed the occurrence
        task_id: The task that was due
        day: Local calendar day of the missed occurrence
    """

    child_id: str
    task_id: str
    day: date

    @property
    def key(self) -> OccurrenceKey:
        """Return the (child, task, day) idempotency key."""
        return (self.child_id, self.task_id, self.day)


# =============================================================================
# MISSION ENGINE
# =============================================================================


class MissionEngine:
    """Pure logic engine for mission occurrences.

    All methods are static - no instance state.
    """

    # Valid state transitions matrix (STATE_ACTIVE = no log yet)
    VALID_TRANSITIONS: ClassVar[dict[str, frozenset[str]]] = {
        STATE_ACTIVE: frozenset(
            {
                LogStatus.IN_PROGRESS,
                LogStatus.PENDING,
                LogStatus.PENDING_EXCUSE,
                LogStatus.FAILED,  # Scheduler backfill / expiry
            }
        ),
        # Progress missions: accumulate until the target is reached
        LogStatus.IN_PROGRESS: frozenset(
            {LogStatus.PENDING, LogStatus.REJECTED, LogStatus.FAILED}
        ),
        # Awaiting admin review
        LogStatus.PENDING: frozenset(
            {LogStatus.VERIFIED, LogStatus.REJECTED, LogStatus.FAILED}
        ),
        # Admin override reverses the reward
        LogStatus.VERIFIED: frozenset({LogStatus.FAILED}),
        LogStatus.PENDING_EXCUSE: frozenset({LogStatus.EXCUSED, LogStatus.REJECTED}),
        LogStatus.REJECTED: frozenset(),
        LogStatus.FAILED: frozenset(),
        LogStatus.EXCUSED: frozenset(),
    }

    # =========================================================================
    # STATE TRANSITION LOGIC
    # =========================================================================

    @staticmethod
    def can_transition(current_state: str, target_state: str) -> bool:
        """Validate if a log status transition is allowed.

        Args:
            current_state: Current log status (or STATE_ACTIVE)
            target_state: Desired new status

        Returns:
            True if transition is valid, False otherwise
        """
        return target_state in MissionEngine.VALID_TRANSITIONS.get(
            current_state, frozenset()
        )

    # =========================================================================
    # TASK QUERIES
    # =========================================================================

    @staticmethod
    def is_task_active(task: TaskData) -> bool:
        """Return False only for archived tasks (is_active explicitly False)."""
        return task.get(const.DATA_TASK_IS_ACTIVE) is not False

    @staticmethod
    def task_created_day(task: TaskData, default: date) -> date:
        """Return the local day the task was created (its anchor date)."""
        created = dt_local_date_of(task.get(const.DATA_TASK_CREATED_AT))
        return created if created is not None else default

    @staticmethod
    def is_task_due_on(task: TaskData, day: date) -> bool:
        """Check whether a task has an occurrence on a local day.

        Once tasks are due only on their next_due_date. Recurring tasks are
        evaluated with the recurrence engine anchored at the creation day.
        Days before the task existed are never due.

        Args:
            task: Task record
            day: Local calendar day

        Returns:
            True if the task is due on `day`
        """
        rule = task.get(const.DATA_TASK_RECURRENCE_RULE)
        if not rule:
            return False

        created_day = MissionEngine.task_created_day(task, day)
        if day < created_day:
            return False

        options = RecurrenceEngine.decode(rule)
        if options.frequency == Frequency.ONCE:
            next_due = dt_parse_date(task.get(const.DATA_TASK_NEXT_DUE_DATE))
            return next_due == day

        return RecurrenceEngine.is_valid_on(day, options, created_day)

    # =========================================================================
    # LOG QUERIES
    # =========================================================================

    @staticmethod
    def log_day(log: TaskLogData) -> date | None:
        """Return the local day a log is bucketed into."""
        return dt_local_date_of(log.get(const.DATA_LOG_COMPLETED_AT))

    @staticmethod
    def index_logs(logs: Iterable[TaskLogData]) -> set[OccurrenceKey]:
        """Build the set of (child, task, day) keys already covered by a log."""
        covered: set[OccurrenceKey] = set()
        for log in logs:
            day = MissionEngine.log_day(log)
            if day is None:
                continue
            covered.add(
                (log[const.DATA_LOG_CHILD_ID], log[const.DATA_LOG_TASK_ID], day)
            )
        return covered

    @staticmethod
    def has_log_on(
        logs: Iterable[TaskLogData], child_id: str, task_id: str, day: date
    ) -> bool:
        """Return True if any log exists for (child, task, local day)."""
        return (child_id, task_id, day) in MissionEngine.index_logs(
            log
            for log in logs
            if log.get(const.DATA_LOG_CHILD_ID) == child_id
            and log.get(const.DATA_LOG_TASK_ID) == task_id
        )

    @staticmethod
    def count_completions_on(
        logs: Iterable[TaskLogData], child_id: str, task_id: str, day: date
    ) -> int:
        """Count logs occupying a completion slot for (child, task, day).

        REJECTED logs do not count - the child may retry after a rejection.
        """
        return sum(
            1
            for log in logs
            if log.get(const.DATA_LOG_CHILD_ID) == child_id
            and log.get(const.DATA_LOG_TASK_ID) == task_id
            and log.get(const.DATA_LOG_STATUS) not in const.RETRYABLE_STATUSES
            and MissionEngine.log_day(log) == day
        )

    # =========================================================================
    # BACKFILL PLANNING
    # =========================================================================

    @staticmethod
    def is_reset_needed(last_checked: str | None, today: date) -> bool:
        """Return True if the multi-day backfill has not run today."""
        if not last_checked:
            return True
        return last_checked != today.isoformat()

    @staticmethod
    def backfill_window(
        last_checked: str | None,
        today: date,
        default_days: int = const.DEFAULT_BACKFILL_DAYS,
        max_days: int = const.MAX_BACKFILL_DAYS,
    ) -> list[date]:
        """Return the local days the backfill scan must cover.

        The window runs from the watermark (inclusive) to yesterday
        (inclusive). Without a usable watermark it covers the last
        `default_days` days; a stale watermark is clamped to `max_days`.

        Args:
            last_checked: Watermark "YYYY-MM-DD" or None
            today: Current local date
            default_days: Look-back when no watermark exists
            max_days: Hard bound on the look-back

        Returns:
            Ordered list of days (may be empty)
        """
        end = dt_add_days(today, -1)
        start = dt_parse_date(last_checked)
        if start is None:
            if last_checked:
                const.LOGGER.debug(
                    "MissionEngine.backfill_window: Unparseable watermark '%s', "
                    "using %s day look-back",
                    last_checked,
                    default_days,
                )
            start = dt_add_days(today, -default_days)

        earliest = dt_add_days(today, -max_days)
        if start < earliest:
            const.LOGGER.debug(
                "MissionEngine.backfill_window: Watermark %s older than %s days, "
                "clamping to %s",
                start,
                max_days,
                earliest,
            )
            start = earliest

        return list(dt_date_range(start, end))

    @staticmethod
    def plan_backfill(
        child_ids: set[str],
        tasks: Iterable[TaskData],
        days: Iterable[date],
        covered: set[OccurrenceKey],
    ) -> list[FailureItem]:
        """Plan FAILED items for due occurrences that have no log.

        Args:
            child_ids: Ids of children that still exist
            tasks: All tasks (archived ones are skipped)
            days: Days to scan (see backfill_window)
            covered: Occurrence keys already logged; updated in place with
                every planned item so later passes never duplicate them

        Returns:
            Planned failure items, in scan order (day, then task, then child)
        """
        active_tasks = [task for task in tasks if MissionEngine.is_task_active(task)]
        planned: list[FailureItem] = []

        for day in days:
            for task in active_tasks:
                if not MissionEngine.is_task_due_on(task, day):
                    continue
                planned.extend(
                    MissionEngine._plan_for_children(task, day, child_ids, covered)
                )

        return planned

    # =========================================================================
    # EXPIRY PLANNING
    # =========================================================================

    @staticmethod
    def is_expired(task: TaskData, now: datetime) -> bool:
        """Return True if the task's local expiry cutoff has passed today.

        Tasks without an expiry_time never expire; a malformed expiry_time is
        logged and treated as no expiry.
        """
        raw_expiry = task.get(const.DATA_TASK_EXPIRY_TIME)
        if not raw_expiry:
            return False

        parsed = parse_time_of_day(raw_expiry)
        if parsed is None:
            const.LOGGER.debug(
                "MissionEngine.is_expired: Ignoring malformed expiry_time '%s' "
                "on task %s",
                raw_expiry,
                task.get(const.DATA_TASK_ID),
            )
            return False

        hour, minute = parsed
        return dt_minutes_of_day(now) > hour * 60 + minute

    @staticmethod
    def plan_expiry(
        child_ids: set[str],
        tasks: Iterable[TaskData],
        now: datetime,
        covered: set[OccurrenceKey],
    ) -> list[FailureItem]:
        """Plan FAILED items for today's occurrences past their expiry cutoff.

        Args:
            child_ids: Ids of children that still exist
            tasks: All tasks (archived ones are skipped)
            now: Current local datetime
            covered: Occurrence keys already logged or queued; updated in place

        Returns:
            Planned failure items dated today
        """
        today = now.date()
        planned: list[FailureItem] = []

        for task in tasks:
            if not MissionEngine.is_task_active(task):
                continue
            if not MissionEngine.is_expired(task, now):
                continue
            if not MissionEngine.is_task_due_on(task, today):
                continue
            planned.extend(
                MissionEngine._plan_for_children(task, today, child_ids, covered)
            )

        return planned

    # =========================================================================
    # STREAKS
    # =========================================================================

    @staticmethod
    def should_increment_streak(
        task_id: str,
        logs: Iterable[TaskLogData],
        current_log_id: str,
        day: date,
    ) -> bool:
        """Return False if another log already counted a success for the day.

        Guards repeatable (max_completions_per_day > 1) tasks from advancing
        the streak more than once per local day.
        """
        return not any(
            log.get(const.DATA_LOG_TASK_ID) == task_id
            and log.get(const.DATA_LOG_ID) != current_log_id
            and log.get(const.DATA_LOG_STATUS) in const.STREAK_SUCCESS_STATUSES
            and MissionEngine.log_day(log) == day
            for log in logs
        )

    @staticmethod
    def calculate_streak_increment(task: TaskData) -> tuple[int, int]:
        """Return (current_streak, best_streak) after one more successful day."""
        current = int(task.get(const.DATA_TASK_CURRENT_STREAK) or 0) + 1
        best = max(int(task.get(const.DATA_TASK_BEST_STREAK) or 0), current)
        return current, best

    # =========================================================================
    # Private helpers
    # =========================================================================

    @staticmethod
    def _plan_for_children(
        task: TaskData,
        day: date,
        child_ids: set[str],
        covered: set[OccurrenceKey],
    ) -> list[FailureItem]:
        """Plan one item per assigned, existing, uncovered child."""
        task_id = task[const.DATA_TASK_ID]
        planned: list[FailureItem] = []
        for child_id in task.get(const.DATA_TASK_ASSIGNED_TO) or []:
            if child_id not in child_ids:
                # Stale assignment - child was removed
                continue
            key = (child_id, task_id, day)
            if key in covered:
                continue
            covered.add(key)
            planned.append(FailureItem(child_id=child_id, task_id=task_id, day=day))
        return planned
