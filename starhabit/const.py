# File: const.py
"""Constants for the StarHabit mission core.

This file centralizes storage keys, record field names, defaults, enums and
limits for consistency across the engines, managers and the store.
"""

from enum import StrEnum
import logging

# ------------------------------------------------------------------------------------------------
# General / Package Information
# ------------------------------------------------------------------------------------------------
STARHABIT_TITLE = "StarHabit"

# Logger
LOGGER = logging.getLogger(__package__)

# Storage and Versioning
STORAGE_KEY = "starhabit_data"
STORAGE_VERSION = 1
SCHEMA_VERSION = 1

# Environment overrides (StarHabitConfig.from_env)
ENV_STORAGE_PATH = "STARHABIT_STORAGE_PATH"
ENV_TIME_ZONE = "STARHABIT_TIME_ZONE"


# ------------------------------------------------------------------------------------------------
# Enums
# ------------------------------------------------------------------------------------------------


class LogStatus(StrEnum):
    """Status of a ChildTaskLog (one occurrence attempt)."""

    IN_PROGRESS = "IN_PROGRESS"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"
    PENDING_EXCUSE = "PENDING_EXCUSE"
    EXCUSED = "EXCUSED"


class TransactionType(StrEnum):
    """Type of a CoinTransaction ledger entry."""

    TASK_VERIFIED = "TASK_VERIFIED"
    REWARD_REDEEMED = "REWARD_REDEEMED"
    MANUAL_ADJ = "MANUAL_ADJ"


class RewardType(StrEnum):
    """Redemption rule of a reward catalog entry."""

    ONE_TIME = "ONE_TIME"
    UNLIMITED = "UNLIMITED"
    ACCUMULATIVE = "ACCUMULATIVE"


class Frequency(StrEnum):
    """Recurrence frequency. ONCE is the no-recurrence sentinel."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    ONCE = "ONCE"


class ErrorCode(StrEnum):
    """Machine-readable error codes carried by StarHabitError."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Statuses that count as a success for streak bookkeeping
STREAK_SUCCESS_STATUSES: frozenset[LogStatus] = frozenset(
    {LogStatus.VERIFIED, LogStatus.EXCUSED}
)

# Statuses that do not occupy a completion slot for the day (child may retry)
RETRYABLE_STATUSES: frozenset[LogStatus] = frozenset({LogStatus.REJECTED})


# ------------------------------------------------------------------------------------------------
# Storage Buckets
# ------------------------------------------------------------------------------------------------
DATA_META = "meta"
DATA_META_SCHEMA_VERSION = "schema_version"
DATA_META_LAST_MISSED_CHECK_DATE = "last_missed_check_date"

DATA_CHILDREN = "children"
DATA_TASKS = "tasks"
DATA_REWARDS = "rewards"
DATA_LOGS = "logs"
DATA_TRANSACTIONS = "transactions"

STORAGE_ENVELOPE_VERSION = "version"
STORAGE_ENVELOPE_KEY = "key"
STORAGE_ENVELOPE_DATA = "data"

# ------------------------------------------------------------------------------------------------
# Record Fields
# ------------------------------------------------------------------------------------------------

# Child
DATA_CHILD_ID = "id"
DATA_CHILD_NAME = "name"
DATA_CHILD_CURRENT_BALANCE = "current_balance"
DATA_CHILD_AVATAR_URL = "avatar_url"
DATA_CHILD_BIRTH_DATE = "birth_date"

# Task
DATA_TASK_ID = "id"
DATA_TASK_NAME = "name"
DATA_TASK_REWARD_VALUE = "reward_value"
DATA_TASK_RECURRENCE_RULE = "recurrence_rule"
DATA_TASK_IS_ACTIVE = "is_active"
DATA_TASK_CREATED_AT = "created_at"
DATA_TASK_ASSIGNED_TO = "assigned_to"
DATA_TASK_EXPIRY_TIME = "expiry_time"
DATA_TASK_NEXT_DUE_DATE = "next_due_date"
DATA_TASK_CURRENT_STREAK = "current_streak"
DATA_TASK_BEST_STREAK = "best_streak"
DATA_TASK_MAX_COMPLETIONS_PER_DAY = "max_completions_per_day"
DATA_TASK_TOTAL_TARGET_VALUE = "total_target_value"
DATA_TASK_TARGET_UNIT = "target_unit"

# Reward
DATA_REWARD_ID = "id"
DATA_REWARD_NAME = "name"
DATA_REWARD_COST_VALUE = "cost_value"
DATA_REWARD_CATEGORY = "category"
DATA_REWARD_ASSIGNED_TO = "assigned_to"
DATA_REWARD_TYPE = "type"
DATA_REWARD_REQUIRED_TASK_ID = "required_task_id"
DATA_REWARD_REQUIRED_TASK_COUNT = "required_task_count"

# ChildTaskLog
DATA_LOG_ID = "id"
DATA_LOG_CHILD_ID = "child_id"
DATA_LOG_TASK_ID = "task_id"
DATA_LOG_STATUS = "status"
DATA_LOG_COMPLETED_AT = "completed_at"
DATA_LOG_REJECTION_REASON = "rejection_reason"
DATA_LOG_NOTES = "notes"
DATA_LOG_CURRENT_VALUE = "current_value"
DATA_LOG_VERIFIED_AT = "verified_at"

# CoinTransaction
DATA_TRANSACTION_ID = "id"
DATA_TRANSACTION_CHILD_ID = "child_id"
DATA_TRANSACTION_AMOUNT = "amount"
DATA_TRANSACTION_TYPE = "type"
DATA_TRANSACTION_REFERENCE_ID = "reference_id"
DATA_TRANSACTION_DESCRIPTION = "description"
DATA_TRANSACTION_CREATED_AT = "created_at"

# Legacy import keys
IMPORT_LEGACY_CHILD_LOGS = "childLogs"
IMPORT_LAST_MISSED_CHECK_DATE = "lastMissedCheckDate"

# ------------------------------------------------------------------------------------------------
# Defaults
# ------------------------------------------------------------------------------------------------
DEFAULT_ZERO = 0
DEFAULT_REWARD_VALUE = 0
DEFAULT_REWARD_COST = 0
DEFAULT_REWARD_TYPE = "UNLIMITED"
DEFAULT_REQUIRED_TASK_COUNT = 1
DEFAULT_MAX_COMPLETIONS_PER_DAY = 1
DEFAULT_RECURRENCE_RULE = "Daily"

# Reason strings written into logs
REASON_MISSED_DEADLINE = "Missed daily deadline"
REASON_EXEMPTION_REJECTED = "Exemption Request Rejected"
REASON_VERIFIED_REVERSED = "Verified mission marked as failed"

# ------------------------------------------------------------------------------------------------
# Recurrence
# ------------------------------------------------------------------------------------------------
WEEKDAY_CODES: tuple[str, ...] = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
WEEKDAY_LABELS: dict[str, str] = {
    "MO": "Mon",
    "TU": "Tue",
    "WE": "Wed",
    "TH": "Thu",
    "FR": "Fri",
    "SA": "Sat",
    "SU": "Sun",
}
VALID_SET_POSITIONS: frozenset[int] = frozenset({-1, 1, 2, 3, 4})

RRULE_KEY_FREQ = "FREQ"
RRULE_KEY_INTERVAL = "INTERVAL"
RRULE_KEY_BYDAY = "BYDAY"
RRULE_KEY_BYMONTHDAY = "BYMONTHDAY"

RRULE_LITERAL_ONCE = "Once"

# ------------------------------------------------------------------------------------------------
# Limits
# ------------------------------------------------------------------------------------------------
# Safety limit for next-due-date search (2 years of days)
MAX_NEXT_DUE_SEARCH_DAYS = 730

# Backfill look-back without a watermark, and hard bound for stale watermarks
DEFAULT_BACKFILL_DAYS = 7
MAX_BACKFILL_DAYS = 90

# Default number of entries returned by history queries
DEFAULT_HISTORY_LIMIT = 50
DEFAULT_LOG_HISTORY_LIMIT = 100
