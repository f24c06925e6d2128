"""Type definitions for StarHabit data structures.

Records are stored as plain dicts (JSON-serialisable) and described here as
TypedDicts for static analysis. Closed value sets (status, transaction type)
use the StrEnums from const.py; because StrEnum members are str, values read
back from JSON compare equal to the enum members without conversion.

IMPORTANT: This file must NOT import from managers or the coordinator to avoid
circular dependencies. Only import from const.py and typing.

NOTE: TypedDict is STATIC ANALYSIS ONLY. Runtime defaults (.get() with
const.DEFAULT_*) remain in the engines and managers.
"""

from typing import Any, NotRequired, TypedDict

from .const import LogStatus, TransactionType

# =============================================================================
# Type Aliases (for readability)
# =============================================================================

ChildId = str  # UUID string
TaskId = str  # UUID string
LogId = str  # UUID string
RewardId = str  # UUID string
TransactionId = str  # UUID string
ISODatetime = str  # ISO 8601 datetime string "2026-01-18T12:30:00-05:00"
ISODate = str  # ISO 8601 local date string (no time) "2026-01-18"


# =============================================================================
# Entity Types
# =============================================================================


class ChildData(TypedDict):
    """Type definition for a child.

    current_balance is a cache of the sum of the child's transactions.
    """

    id: ChildId
    name: str
    current_balance: int
    avatar_url: NotRequired[str | None]
    birth_date: NotRequired[ISODate | None]


class TaskData(TypedDict):
    """Type definition for a task (mission template)."""

    id: TaskId
    name: str
    reward_value: int
    recurrence_rule: str
    is_active: bool
    created_at: ISODatetime
    assigned_to: list[ChildId]
    expiry_time: NotRequired[str | None]  # "HH:MM" local time
    next_due_date: NotRequired[ISODate | None]
    current_streak: int
    best_streak: int
    max_completions_per_day: int
    total_target_value: NotRequired[float | None]
    target_unit: NotRequired[str | None]


class RewardData(TypedDict):
    """Type definition for a reward catalog entry."""

    id: RewardId
    name: str
    cost_value: int
    category: NotRequired[str | None]
    assigned_to: list[ChildId]
    type: NotRequired[str]
    required_task_id: NotRequired[TaskId | None]
    required_task_count: NotRequired[int | None]


class TaskLogData(TypedDict):
    """Type definition for a ChildTaskLog (one occurrence attempt)."""

    id: LogId
    child_id: ChildId
    task_id: TaskId
    status: LogStatus
    completed_at: ISODatetime  # Local timestamp; buckets the log into a day
    rejection_reason: NotRequired[str | None]
    notes: NotRequired[str | None]
    current_value: NotRequired[float | None]
    verified_at: NotRequired[ISODatetime | None]


class TransactionData(TypedDict):
    """Type definition for an append-only CoinTransaction."""

    id: TransactionId
    child_id: ChildId
    amount: int  # Signed: positive = earn, negative = spend/deduct
    type: TransactionType
    reference_id: str | None
    description: NotRequired[str | None]
    created_at: ISODatetime


class PendingVerification(TaskLogData):
    """A PENDING log enriched with display fields for the review queue."""

    task_title: str
    reward_value: int
    child_name: str


class StoreMeta(TypedDict):
    """Store metadata bucket."""

    schema_version: int
    last_missed_check_date: ISODate | None


class StoreData(TypedDict):
    """Complete persisted structure (id-keyed buckets)."""

    meta: StoreMeta
    children: dict[ChildId, ChildData]
    tasks: dict[TaskId, TaskData]
    rewards: dict[RewardId, RewardData]
    logs: dict[LogId, TaskLogData]
    transactions: dict[TransactionId, TransactionData]


# Import payloads are validated at runtime (voluptuous) - keys vary by source
ImportPayload = dict[str, Any]
