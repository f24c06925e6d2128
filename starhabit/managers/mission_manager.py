"""Mission Manager - Stateful occurrence lifecycle operations.

Responsibilities:
- Create occurrence logs (complete, progress, exemption requests)
- Admin decisions (verify, reject, approve/reject exemptions, reversals)
- Batch-write FAILED logs for the scheduler
- Log queries (history, review queue)

Every operation is one atomic store write. Transitions are checked against
MissionEngine.VALID_TRANSITIONS; refusals return False/None and are logged.

ARCHITECTURE: MissionManager owns the log bucket. Balance changes are
delegated to EconomyManager.apply_transaction inside the same write.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .. import const, data_builders as db
from ..const import LogStatus, TransactionType
from ..engines.economy_engine import EconomyEngine
from ..engines.mission_engine import STATE_ACTIVE, MissionEngine
from ..engines.recurrence_engine import RecurrenceEngine
from ..utils.dt_utils import dt_parse, start_of_local_day
from .base_manager import BaseManager, MutationAborted

if TYPE_CHECKING:
    from ..engines.mission_engine import FailureItem
    from ..store import StarHabitStore
    from ..type_defs import PendingVerification, TaskData, TaskLogData
    from .economy_manager import EconomyManager


class MissionManager(BaseManager):
    """Manager for mission occurrence logs.

    NOT responsible for:
    - Deciding which occurrences were missed (SchedulerManager)
    - Streak increments after a verification (SchedulerManager)
    """

    def __init__(self, store: StarHabitStore, economy: EconomyManager) -> None:
        """Initialize the MissionManager.

        Args:
            store: Shared store
            economy: EconomyManager used for reward payouts and reversals
        """
        super().__init__(store)
        self._economy = economy

    # =========================================================================
    # Child actions
    # =========================================================================

    def complete(
        self,
        child_id: str,
        task_id: str,
        *,
        value: float | None = None,
        now: datetime | None = None,
    ) -> TaskLogData | None:
        """Record a child completing a task today.

        Creates a PENDING log, or for progress missions (total_target_value
        set) an IN_PROGRESS log holding `value`, moved straight to PENDING
        when the value already reaches the target. The day's completion count
        is checked in the same write that inserts the log.

        Returns:
            The new log, or None if refused (unknown/archived task, unknown or
            unassigned child, or the day's completion limit reached)
        """
        now = self._resolve_now(now)
        try:
            with self._store.mutate() as data:
                task = self._check_assignment(data, "complete", child_id, task_id)
                if not self._has_free_slot(data, child_id, task, now):
                    const.LOGGER.info(
                        "MissionManager.complete: Task '%s' already complete today for child '%s'",
                        task_id,
                        child_id,
                    )
                    raise MutationAborted(None)

                target = task.get(const.DATA_TASK_TOTAL_TARGET_VALUE)
                if target:
                    current_value = float(value or 0)
                    status = (
                        LogStatus.PENDING
                        if current_value >= target
                        else LogStatus.IN_PROGRESS
                    )
                    log = db.build_log(
                        child_id,
                        task_id,
                        status,
                        now.isoformat(),
                        current_value=current_value,
                    )
                else:
                    log = db.build_log(
                        child_id, task_id, LogStatus.PENDING, now.isoformat()
                    )
                data[const.DATA_LOGS][log[const.DATA_LOG_ID]] = log
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "MissionManager.complete: child=%s, task=%s, log=%s, status=%s",
            child_id,
            task_id,
            log[const.DATA_LOG_ID],
            log[const.DATA_LOG_STATUS],
        )
        return dict(log)

    def update_progress(
        self, log_id: str, new_value: float, target: float | None = None
    ) -> bool:
        """Update the running total of an IN_PROGRESS log.

        Moves the log to PENDING once new_value reaches the target (default:
        the task's total_target_value).
        """
        try:
            with self._store.mutate() as data:
                stored = self._get_log(log_id, data)
                if (
                    stored is None
                    or stored.get(const.DATA_LOG_STATUS) != LogStatus.IN_PROGRESS
                ):
                    const.LOGGER.warning(
                        "MissionManager.update_progress: Log '%s' not found or not in progress",
                        log_id,
                    )
                    raise MutationAborted

                if target is None:
                    task = self._get_task(stored[const.DATA_LOG_TASK_ID], data) or {}
                    target = task.get(const.DATA_TASK_TOTAL_TARGET_VALUE)

                stored[const.DATA_LOG_CURRENT_VALUE] = new_value
                if target and new_value >= target:
                    stored[const.DATA_LOG_STATUS] = LogStatus.PENDING
        except MutationAborted as err:
            return err.result

        return True

    def submit_exemption(
        self,
        child_id: str,
        task_id: str,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> TaskLogData | None:
        """Ask to be excused from today's occurrence (PENDING_EXCUSE log)."""
        now = self._resolve_now(now)
        try:
            with self._store.mutate() as data:
                task = self._check_assignment(
                    data, "submit_exemption", child_id, task_id
                )
                if not self._has_free_slot(data, child_id, task, now):
                    const.LOGGER.info(
                        "MissionManager.submit_exemption: Task '%s' already handled today for child '%s'",
                        task_id,
                        child_id,
                    )
                    raise MutationAborted(None)

                log = db.build_log(
                    child_id,
                    task_id,
                    LogStatus.PENDING_EXCUSE,
                    now.isoformat(),
                    notes=reason,
                )
                data[const.DATA_LOGS][log[const.DATA_LOG_ID]] = log
        except MutationAborted as err:
            return err.result

        return dict(log)

    # =========================================================================
    # Admin decisions
    # =========================================================================

    def verify(
        self,
        log_id: str,
        child_id: str,
        reward_value: int,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Verify a log and pay its reward.

        Writes the VERIFIED status, a +reward TASK_VERIFIED transaction and
        the balance update in one step. The status is read inside that step,
        so verifying an already VERIFIED log (including a concurrent double
        tap) is a successful no-op that pays nothing.
        """
        now = self._resolve_now(now)
        try:
            with self._store.mutate() as data:
                stored = self._get_log(log_id, data)
                if stored is None:
                    const.LOGGER.warning(
                        "MissionManager.verify: Log ID '%s' not found", log_id
                    )
                    raise MutationAborted

                if stored.get(const.DATA_LOG_STATUS) == LogStatus.VERIFIED:
                    const.LOGGER.debug(
                        "MissionManager.verify: Log '%s' already verified", log_id
                    )
                    raise MutationAborted(True)

                if self._get_child(child_id, data) is None:
                    const.LOGGER.warning(
                        "MissionManager.verify: Child ID '%s' not found", child_id
                    )
                    raise MutationAborted

                self._check_transition("verify", stored, LogStatus.VERIFIED)

                stored[const.DATA_LOG_STATUS] = LogStatus.VERIFIED
                stored[const.DATA_LOG_VERIFIED_AT] = now.isoformat()
                self._economy.apply_transaction(
                    data,
                    child_id,
                    int(reward_value),
                    TransactionType.TASK_VERIFIED,
                    reference_id=log_id,
                )
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "MissionManager.verify: log=%s, child=%s, reward=%s",
            log_id,
            child_id,
            reward_value,
        )
        return True

    def reject(
        self, log_id: str, reason: str, *, now: datetime | None = None
    ) -> bool:
        """Reject a log with a reason. No balance effect; the child may retry."""
        return self._reject(log_id, reason, "reject", now)

    def approve_exemption(self, log_id: str, *, now: datetime | None = None) -> bool:
        """Excuse an occurrence and move the task's next_due_date forward.

        Today counts as handled: the next due date is the first occurrence
        after today, anchored at the task's creation day.
        """
        now = self._resolve_now(now)
        today = now.date()

        try:
            with self._store.mutate() as data:
                stored = self._get_log(log_id, data)
                if stored is None:
                    const.LOGGER.warning(
                        "MissionManager.approve_exemption: Log ID '%s' not found",
                        log_id,
                    )
                    raise MutationAborted
                self._check_transition("approve_exemption", stored, LogStatus.EXCUSED)

                stored[const.DATA_LOG_STATUS] = LogStatus.EXCUSED
                stored[const.DATA_LOG_VERIFIED_AT] = now.isoformat()

                task = self._get_task(stored[const.DATA_LOG_TASK_ID], data)
                if task is not None:
                    next_due = RecurrenceEngine.next_due_date(
                        task.get(const.DATA_TASK_RECURRENCE_RULE),
                        today,
                        anchor=MissionEngine.task_created_day(task, today),
                        today=today,
                    )
                    # Once tasks have no next occurrence; keep their date
                    if next_due:
                        task[const.DATA_TASK_NEXT_DUE_DATE] = next_due
        except MutationAborted as err:
            return err.result

        const.LOGGER.info(
            "MissionManager.approve_exemption: Log '%s' excused", log_id
        )
        return True

    def reject_exemption(self, log_id: str, *, now: datetime | None = None) -> bool:
        """Reject an exemption request."""
        return self._reject(
            log_id,
            const.REASON_EXEMPTION_REJECTED,
            "reject_exemption",
            now,
            expected=LogStatus.PENDING_EXCUSE,
        )

    def mark_verified_as_failed(self, log_id: str, task_id: str) -> bool:
        """Reverse a verification.

        Appends a negative TASK_VERIFIED entry equal to what the log earned,
        flips the log to FAILED and resets the task's streak, in one write.
        """
        try:
            with self._store.mutate() as data:
                stored = self._get_log(log_id, data)
                if stored is None:
                    const.LOGGER.warning(
                        "MissionManager.mark_verified_as_failed: Log ID '%s' not found",
                        log_id,
                    )
                    raise MutationAborted
                self._check_transition(
                    "mark_verified_as_failed", stored, LogStatus.FAILED
                )

                child_id = stored[const.DATA_LOG_CHILD_ID]
                earned = sum(
                    int(entry.get(const.DATA_TRANSACTION_AMOUNT) or 0)
                    for entry in EconomyEngine.find_by_reference(
                        data[const.DATA_TRANSACTIONS].values(),
                        log_id,
                        TransactionType.TASK_VERIFIED,
                    )
                )
                if earned and child_id in data[const.DATA_CHILDREN]:
                    self._economy.apply_transaction(
                        data,
                        child_id,
                        -earned,
                        TransactionType.TASK_VERIFIED,
                        reference_id=log_id,
                        description=const.REASON_VERIFIED_REVERSED,
                    )

                stored[const.DATA_LOG_STATUS] = LogStatus.FAILED
                stored[const.DATA_LOG_REJECTION_REASON] = const.REASON_VERIFIED_REVERSED

                task = self._get_task(task_id, data)
                if task is not None:
                    task[const.DATA_TASK_CURRENT_STREAK] = 0
        except MutationAborted as err:
            return err.result

        const.LOGGER.info(
            "MissionManager.mark_verified_as_failed: Log '%s' reversed (%d stars)",
            log_id,
            earned,
        )
        return True

    # =========================================================================
    # Scheduler write path
    # =========================================================================

    def log_failed_batch(
        self,
        items: Iterable[FailureItem],
        *,
        reset_streaks: bool = True,
    ) -> tuple[list[TaskLogData], list[TaskData]]:
        """Write FAILED logs for missed occurrences in one store write.

        Items whose child or task no longer exists, or whose occurrence is
        already covered by a stored log, are skipped. Each FAILED log is
        dated at local midnight of the missed day.

        Returns:
            (created logs, tasks whose streak was reset)
        """
        items = list(items)
        if not items:
            return [], []

        created: list[TaskLogData] = []
        reset_task_ids: list[str] = []

        with self._store.mutate() as data:
            covered = MissionEngine.index_logs(data[const.DATA_LOGS].values())
            for item in items:
                if (
                    item.child_id not in data[const.DATA_CHILDREN]
                    or item.task_id not in data[const.DATA_TASKS]
                ):
                    const.LOGGER.debug(
                        "MissionManager.log_failed_batch: Skipping stale item %s",
                        item,
                    )
                    continue
                if item.key in covered:
                    continue
                covered.add(item.key)

                log = db.build_log(
                    item.child_id,
                    item.task_id,
                    LogStatus.FAILED,
                    start_of_local_day(item.day).isoformat(),
                    rejection_reason=const.REASON_MISSED_DEADLINE,
                )
                data[const.DATA_LOGS][log[const.DATA_LOG_ID]] = log
                created.append(dict(log))
                if item.task_id not in reset_task_ids:
                    reset_task_ids.append(item.task_id)

            if reset_streaks:
                for task_id in reset_task_ids:
                    data[const.DATA_TASKS][task_id][const.DATA_TASK_CURRENT_STREAK] = 0

        const.LOGGER.info(
            "MissionManager.log_failed_batch: Logged %d missed occurrence(s)",
            len(created),
        )
        updated_tasks = (
            [dict(self.data[const.DATA_TASKS][task_id]) for task_id in reset_task_ids]
            if reset_streaks
            else []
        )
        return created, updated_tasks

    # =========================================================================
    # Queries
    # =========================================================================

    def get_logs(
        self,
        *,
        child_id: str | None = None,
        task_id: str | None = None,
        status: LogStatus | None = None,
        limit: int | None = const.DEFAULT_LOG_HISTORY_LIMIT,
    ) -> list[TaskLogData]:
        """Return logs newest first, optionally filtered."""
        logs = [
            dict(log)
            for log in self.data[const.DATA_LOGS].values()
            if (child_id is None or log.get(const.DATA_LOG_CHILD_ID) == child_id)
            and (task_id is None or log.get(const.DATA_LOG_TASK_ID) == task_id)
            and (status is None or log.get(const.DATA_LOG_STATUS) == status)
        ]
        logs.sort(key=_completed_sort_key, reverse=True)
        return logs[:limit] if limit is not None else logs

    def pending_verifications(self) -> list[PendingVerification]:
        """Return PENDING logs enriched with task and child display fields."""
        pending: list[PendingVerification] = []
        for log in self.get_logs(status=LogStatus.PENDING, limit=None):
            task = self._get_task(log[const.DATA_LOG_TASK_ID]) or {}
            child = self._get_child(log[const.DATA_LOG_CHILD_ID]) or {}
            pending.append(
                {
                    **log,
                    "task_title": task.get(const.DATA_TASK_NAME) or "Unknown Task",
                    "reward_value": int(task.get(const.DATA_TASK_REWARD_VALUE) or 0),
                    "child_name": child.get(const.DATA_CHILD_NAME) or "Unknown Child",
                }
            )
        return pending

    # =========================================================================
    # Private helpers (called inside an open mutate() block)
    # =========================================================================

    def _check_assignment(
        self, data: dict[str, Any], operation: str, child_id: str, task_id: str
    ) -> TaskData:
        """Return the task if it is active and assigned to an existing child.

        Raises:
            MutationAborted: With a None result when the action is refused
        """
        task = self._get_task(task_id, data)
        if task is None or not MissionEngine.is_task_active(task):
            const.LOGGER.warning(
                "MissionManager.%s: Task '%s' not found or archived", operation, task_id
            )
            raise MutationAborted(None)
        if self._get_child(child_id, data) is None:
            const.LOGGER.warning(
                "MissionManager.%s: Child ID '%s' not found", operation, child_id
            )
            raise MutationAborted(None)
        if child_id not in (task.get(const.DATA_TASK_ASSIGNED_TO) or []):
            const.LOGGER.warning(
                "MissionManager.%s: Task '%s' is not assigned to child '%s'",
                operation,
                task_id,
                child_id,
            )
            raise MutationAborted(None)
        return task

    @staticmethod
    def _has_free_slot(
        data: dict[str, Any], child_id: str, task: TaskData, now: datetime
    ) -> bool:
        """Return True if the child may still log the task today."""
        limit = int(
            task.get(const.DATA_TASK_MAX_COMPLETIONS_PER_DAY)
            or const.DEFAULT_MAX_COMPLETIONS_PER_DAY
        )
        used = MissionEngine.count_completions_on(
            data[const.DATA_LOGS].values(),
            child_id,
            task[const.DATA_TASK_ID],
            now.date(),
        )
        return used < limit

    @staticmethod
    def _check_transition(operation: str, log: TaskLogData, target: LogStatus) -> None:
        """Check the state machine, logging refusals.

        Raises:
            MutationAborted: When the transition is not allowed
        """
        current = log.get(const.DATA_LOG_STATUS) or STATE_ACTIVE
        if MissionEngine.can_transition(current, target):
            return
        const.LOGGER.warning(
            "MissionManager.%s: Invalid transition %s -> %s for log '%s'",
            operation,
            current,
            target,
            log.get(const.DATA_LOG_ID),
        )
        raise MutationAborted

    def _reject(
        self,
        log_id: str,
        reason: str,
        operation: str,
        now: datetime | None,
        *,
        expected: LogStatus | None = None,
    ) -> bool:
        """Move a log to REJECTED with a reason.

        `expected` restricts the source status (exemption rejections only
        apply to PENDING_EXCUSE logs).
        """
        now = self._resolve_now(now)
        try:
            with self._store.mutate() as data:
                stored = self._get_log(log_id, data)
                if stored is None:
                    const.LOGGER.warning(
                        "MissionManager.%s: Log ID '%s' not found", operation, log_id
                    )
                    raise MutationAborted
                if expected is not None and stored.get(const.DATA_LOG_STATUS) != expected:
                    const.LOGGER.warning(
                        "MissionManager.%s: Log '%s' is not %s", operation, log_id, expected
                    )
                    raise MutationAborted
                self._check_transition(operation, stored, LogStatus.REJECTED)

                stored[const.DATA_LOG_STATUS] = LogStatus.REJECTED
                stored[const.DATA_LOG_REJECTION_REASON] = reason
                stored[const.DATA_LOG_VERIFIED_AT] = now.isoformat()
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "MissionManager.%s: log=%s, reason=%s", operation, log_id, reason
        )
        return True


def _completed_sort_key(log: dict[str, Any]) -> float:
    """Sort key: completed_at as a POSIX timestamp (unparseable sorts last)."""
    parsed = dt_parse(log.get(const.DATA_LOG_COMPLETED_AT))
    return parsed.timestamp() if parsed else float("-inf")
