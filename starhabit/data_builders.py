"""Entity lifecycle helpers.

This module is the SINGLE SOURCE OF TRUTH for:
- Entity field defaults
- Business rule validation of admin input
- Complete entity structure building
- Import payload validation and normalisation

### Build Functions
Each entity type has a `build_<entity>()` function that:
- Takes user_input with DATA_* keys
- Generates the id (UUID) for new entities
- Sets timestamps (created_at)
- Applies field defaults
- Returns a complete record ready for storage

One function handles both create (existing=None) and update
(existing=<record>): user_input wins, then the existing value, then the default.

### Import Schemas
`validate_import_payload()` checks a whole-database payload with voluptuous
schemas and raises StarHabitValidationError with the offending path.
`normalize_import_payload()` turns the validated, list-shaped payload into the
store's id-keyed buckets.

Consumers:
- coordinator.py (entity CRUD, import/export)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
import uuid

import voluptuous as vol

from . import const
from .const import Frequency, LogStatus, RewardType, TransactionType
from .engines.recurrence_engine import RecurrenceEngine
from .exceptions import StarHabitError, StarHabitValidationError
from .store import StarHabitStore
from .type_defs import (
    ChildData,
    ImportPayload,
    RewardData,
    TaskData,
    TaskLogData,
)
from .utils.dt_utils import dt_now_iso, dt_today_iso, parse_time_of_day

# ==============================================================================
# HELPER FUNCTIONS FOR FIELD NORMALIZATION
# ==============================================================================


def _normalize_list_field(value: Any) -> list[Any]:
    """Normalize a field that should be a list.

    Handles cases where the value might be:
    - Already a list → de-duplicated copy, order kept
    - None → empty list
    - A single string → one-element list

    This prevents bugs like list("abc") → ['a', 'b', 'c']
    """
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, Iterable):
        return list(dict.fromkeys(value))
    return []


def _optional_str(value: Any) -> str | None:
    """Return a stripped string, or None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ==============================================================================
# EXCEPTIONS
# ==============================================================================


class EntityValidationError(StarHabitError):
    """Validation error with field-specific information.

    Raised when business rule validation fails in entity creation or update.
    The field attribute lets callers map the error back to the input that
    caused the failure.

    Attributes:
        field: The DATA_* constant identifying the offending field
        reason: Short machine-readable reason ("required", "negative", ...)

    Example:
        raise EntityValidationError(
            field=const.DATA_TASK_REWARD_VALUE,
            reason="negative",
        )
    """

    def __init__(self, field: str, reason: str) -> None:
        """Initialize EntityValidationError."""
        super().__init__(
            f"Invalid value for '{field}': {reason}",
            const.ErrorCode.VALIDATION_ERROR,
            {"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


def _field_getter(
    user_input: dict[str, Any], existing: dict[str, Any] | None
) -> Callable[[str, Any], Any]:
    """Return get_field(data_key, default) with user_input > existing > default."""

    def get_field(data_key: str, default: Any) -> Any:
        if data_key in user_input:
            return user_input[data_key]
        if existing is not None:
            return existing.get(data_key, default)
        return default

    return get_field


def _require_name(get_field: Callable[[str, Any], Any], key: str) -> str:
    """Return the stripped name, raising if it ends up empty."""
    raw_name = get_field(key, "")
    name = str(raw_name).strip() if raw_name else ""
    if not name:
        raise EntityValidationError(field=key, reason="required")
    return name


def _non_negative_int(value: Any, field: str) -> int:
    """Coerce to int and reject negatives and non-numbers."""
    try:
        number = int(value)
    except (TypeError, ValueError) as err:
        raise EntityValidationError(field=field, reason="not_a_number") from err
    if number < 0:
        raise EntityValidationError(field=field, reason="negative")
    return number


# ==============================================================================
# CHILDREN
# ==============================================================================


def build_child(
    user_input: dict[str, Any],
    existing: ChildData | None = None,
) -> ChildData:
    """Build child data for create or update operations.

    current_balance is never taken from user_input: it only moves through
    ledger transactions. New children start at 0.

    Raises:
        EntityValidationError: If the name is empty/whitespace
    """
    get_field = _field_getter(user_input, existing)
    name = _require_name(get_field, const.DATA_CHILD_NAME)

    child: ChildData = {
        const.DATA_CHILD_ID: (
            existing[const.DATA_CHILD_ID] if existing else str(uuid.uuid4())
        ),
        const.DATA_CHILD_NAME: name,
        const.DATA_CHILD_CURRENT_BALANCE: (
            int(existing.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)
            if existing
            else const.DEFAULT_ZERO
        ),
        const.DATA_CHILD_AVATAR_URL: _optional_str(
            get_field(const.DATA_CHILD_AVATAR_URL, None)
        ),
        const.DATA_CHILD_BIRTH_DATE: _optional_str(
            get_field(const.DATA_CHILD_BIRTH_DATE, None)
        ),
    }
    return child


# ==============================================================================
# TASKS
# ==============================================================================


def build_task(
    user_input: dict[str, Any],
    existing: TaskData | None = None,
) -> TaskData:
    """Build task data for create or update operations.

    Args:
        user_input: Data with DATA_TASK_* keys (may have missing fields)
        existing: None for create, existing TaskData for update

    Returns:
        Complete TaskData ready for storage

    Raises:
        EntityValidationError: Empty name, negative reward, malformed
            expiry_time, max_completions_per_day < 1 or a non-positive target.
            Recurrence rules are never rejected; decoding is total.

    Examples:
        # CREATE mode - generates UUID, applies const.DEFAULT_* for missing fields
        task = build_task({DATA_TASK_NAME: "Brush teeth", DATA_TASK_REWARD_VALUE: 2})

        # UPDATE mode - preserves existing fields not in user_input
        task = build_task({DATA_TASK_EXPIRY_TIME: "20:00"}, existing=old_task)
    """
    get_field = _field_getter(user_input, existing)
    name = _require_name(get_field, const.DATA_TASK_NAME)

    reward_value = _non_negative_int(
        get_field(const.DATA_TASK_REWARD_VALUE, const.DEFAULT_REWARD_VALUE),
        const.DATA_TASK_REWARD_VALUE,
    )

    rule = _optional_str(
        get_field(const.DATA_TASK_RECURRENCE_RULE, const.DEFAULT_RECURRENCE_RULE)
    ) or const.DEFAULT_RECURRENCE_RULE

    expiry_time = _optional_str(get_field(const.DATA_TASK_EXPIRY_TIME, None))
    if expiry_time is not None and parse_time_of_day(expiry_time) is None:
        raise EntityValidationError(
            field=const.DATA_TASK_EXPIRY_TIME, reason="invalid_time"
        )

    max_completions = get_field(
        const.DATA_TASK_MAX_COMPLETIONS_PER_DAY,
        const.DEFAULT_MAX_COMPLETIONS_PER_DAY,
    )
    try:
        max_completions = int(max_completions)
    except (TypeError, ValueError) as err:
        raise EntityValidationError(
            field=const.DATA_TASK_MAX_COMPLETIONS_PER_DAY, reason="not_a_number"
        ) from err
    if max_completions < 1:
        raise EntityValidationError(
            field=const.DATA_TASK_MAX_COMPLETIONS_PER_DAY, reason="below_minimum"
        )

    target = get_field(const.DATA_TASK_TOTAL_TARGET_VALUE, None)
    if target is not None:
        try:
            target = float(target)
        except (TypeError, ValueError) as err:
            raise EntityValidationError(
                field=const.DATA_TASK_TOTAL_TARGET_VALUE, reason="not_a_number"
            ) from err
        if target <= 0:
            raise EntityValidationError(
                field=const.DATA_TASK_TOTAL_TARGET_VALUE, reason="below_minimum"
            )

    next_due_date = _optional_str(get_field(const.DATA_TASK_NEXT_DUE_DATE, None))
    if (
        next_due_date is None
        and RecurrenceEngine.decode(rule).frequency == Frequency.ONCE
    ):
        # One-off tasks are due on the day they are created unless scheduled
        next_due_date = dt_today_iso()

    task: TaskData = {
        const.DATA_TASK_ID: (
            existing[const.DATA_TASK_ID] if existing else str(uuid.uuid4())
        ),
        const.DATA_TASK_NAME: name,
        const.DATA_TASK_REWARD_VALUE: reward_value,
        const.DATA_TASK_RECURRENCE_RULE: rule,
        const.DATA_TASK_IS_ACTIVE: bool(get_field(const.DATA_TASK_IS_ACTIVE, True)),
        const.DATA_TASK_CREATED_AT: (
            (existing or {}).get(const.DATA_TASK_CREATED_AT) or dt_now_iso()
        ),
        const.DATA_TASK_ASSIGNED_TO: _normalize_list_field(
            get_field(const.DATA_TASK_ASSIGNED_TO, [])
        ),
        const.DATA_TASK_EXPIRY_TIME: expiry_time,
        const.DATA_TASK_NEXT_DUE_DATE: next_due_date,
        const.DATA_TASK_CURRENT_STREAK: _non_negative_int(
            get_field(const.DATA_TASK_CURRENT_STREAK, const.DEFAULT_ZERO),
            const.DATA_TASK_CURRENT_STREAK,
        ),
        const.DATA_TASK_BEST_STREAK: _non_negative_int(
            get_field(const.DATA_TASK_BEST_STREAK, const.DEFAULT_ZERO),
            const.DATA_TASK_BEST_STREAK,
        ),
        const.DATA_TASK_MAX_COMPLETIONS_PER_DAY: max_completions,
        const.DATA_TASK_TOTAL_TARGET_VALUE: target,
        const.DATA_TASK_TARGET_UNIT: _optional_str(
            get_field(const.DATA_TASK_TARGET_UNIT, None)
        ),
    }
    return task


# ==============================================================================
# REWARDS
# ==============================================================================


def build_reward(
    user_input: dict[str, Any],
    existing: RewardData | None = None,
) -> RewardData:
    """Build reward data for create or update operations.

    ACCUMULATIVE rewards name the task (and how many VERIFIED logs of it)
    that unlock them; the other types carry no requirement.

    Raises:
        EntityValidationError: If the name is empty, the cost negative, the
            type unknown or an ACCUMULATIVE reward has no required task
    """
    get_field = _field_getter(user_input, existing)
    name = _require_name(get_field, const.DATA_REWARD_NAME)

    reward_type = str(get_field(const.DATA_REWARD_TYPE, None) or const.DEFAULT_REWARD_TYPE)
    if reward_type not in RewardType.__members__:
        raise EntityValidationError(field=const.DATA_REWARD_TYPE, reason="invalid")

    required_task_id: str | None = None
    required_task_count: int | None = None
    if reward_type == RewardType.ACCUMULATIVE:
        required_task_id = _optional_str(
            get_field(const.DATA_REWARD_REQUIRED_TASK_ID, None)
        )
        if required_task_id is None:
            raise EntityValidationError(
                field=const.DATA_REWARD_REQUIRED_TASK_ID, reason="required"
            )
        required_task_count = _non_negative_int(
            get_field(const.DATA_REWARD_REQUIRED_TASK_COUNT, None)
            or const.DEFAULT_REQUIRED_TASK_COUNT,
            const.DATA_REWARD_REQUIRED_TASK_COUNT,
        )

    reward: RewardData = {
        const.DATA_REWARD_ID: (
            existing[const.DATA_REWARD_ID] if existing else str(uuid.uuid4())
        ),
        const.DATA_REWARD_NAME: name,
        const.DATA_REWARD_COST_VALUE: _non_negative_int(
            get_field(const.DATA_REWARD_COST_VALUE, const.DEFAULT_REWARD_COST),
            const.DATA_REWARD_COST_VALUE,
        ),
        const.DATA_REWARD_CATEGORY: _optional_str(
            get_field(const.DATA_REWARD_CATEGORY, None)
        ),
        const.DATA_REWARD_ASSIGNED_TO: _normalize_list_field(
            get_field(const.DATA_REWARD_ASSIGNED_TO, [])
        ),
        const.DATA_REWARD_TYPE: reward_type,
        const.DATA_REWARD_REQUIRED_TASK_ID: required_task_id,
        const.DATA_REWARD_REQUIRED_TASK_COUNT: required_task_count,
    }
    return reward


# ==============================================================================
# LOGS
# ==============================================================================


def build_log(
    child_id: str,
    task_id: str,
    status: LogStatus,
    completed_at: str,
    *,
    current_value: float | None = None,
    rejection_reason: str | None = None,
    notes: str | None = None,
) -> TaskLogData:
    """Build a new ChildTaskLog record.

    Args:
        child_id: Child the occurrence belongs to
        task_id: Task template id
        status: Initial LogStatus
        completed_at: Local ISO timestamp that buckets the log into a day
        current_value: Progress running total (progress missions)
        rejection_reason: Reason text (FAILED/REJECTED logs)
        notes: Free text (exemption reason)
    """
    log: TaskLogData = {
        const.DATA_LOG_ID: str(uuid.uuid4()),
        const.DATA_LOG_CHILD_ID: child_id,
        const.DATA_LOG_TASK_ID: task_id,
        const.DATA_LOG_STATUS: status,
        const.DATA_LOG_COMPLETED_AT: completed_at,
    }
    if current_value is not None:
        log[const.DATA_LOG_CURRENT_VALUE] = current_value
    if rejection_reason is not None:
        log[const.DATA_LOG_REJECTION_REASON] = rejection_reason
    if notes is not None:
        log[const.DATA_LOG_NOTES] = notes
    return log


# ==============================================================================
# IMPORT SCHEMAS
# ==============================================================================

_NUMBER = vol.Any(int, float)
_OPTIONAL_STR = vol.Any(None, str)
_OPTIONAL_NUMBER = vol.Any(None, int, float)
_ID_LIST = vol.Any(None, [str])

CHILD_IMPORT_SCHEMA = vol.Schema(
    {
        vol.Required(const.DATA_CHILD_ID): str,
        vol.Required(const.DATA_CHILD_NAME): str,
        vol.Optional(const.DATA_CHILD_CURRENT_BALANCE): _OPTIONAL_NUMBER,
        vol.Optional(const.DATA_CHILD_AVATAR_URL): _OPTIONAL_STR,
        vol.Optional(const.DATA_CHILD_BIRTH_DATE): _OPTIONAL_STR,
    },
    extra=vol.ALLOW_EXTRA,
)

TASK_IMPORT_SCHEMA = vol.Schema(
    {
        vol.Required(const.DATA_TASK_ID): str,
        vol.Required(const.DATA_TASK_NAME): str,
        vol.Required(const.DATA_TASK_REWARD_VALUE): _NUMBER,
        vol.Optional(const.DATA_TASK_RECURRENCE_RULE): _OPTIONAL_STR,
        vol.Optional(const.DATA_TASK_IS_ACTIVE): vol.Any(None, bool),
        vol.Optional(const.DATA_TASK_CREATED_AT): _OPTIONAL_STR,
        vol.Optional(const.DATA_TASK_ASSIGNED_TO): _ID_LIST,
        vol.Optional(const.DATA_TASK_EXPIRY_TIME): _OPTIONAL_STR,
        vol.Optional(const.DATA_TASK_NEXT_DUE_DATE): _OPTIONAL_STR,
        vol.Optional(const.DATA_TASK_TOTAL_TARGET_VALUE): _OPTIONAL_NUMBER,
        vol.Optional(const.DATA_TASK_TARGET_UNIT): _OPTIONAL_STR,
        vol.Optional(const.DATA_TASK_MAX_COMPLETIONS_PER_DAY): _OPTIONAL_NUMBER,
        vol.Optional(const.DATA_TASK_CURRENT_STREAK): _OPTIONAL_NUMBER,
        vol.Optional(const.DATA_TASK_BEST_STREAK): _OPTIONAL_NUMBER,
    },
    extra=vol.ALLOW_EXTRA,
)

REWARD_IMPORT_SCHEMA = vol.Schema(
    {
        vol.Required(const.DATA_REWARD_ID): str,
        vol.Required(const.DATA_REWARD_NAME): str,
        vol.Required(const.DATA_REWARD_COST_VALUE): _NUMBER,
        vol.Optional(const.DATA_REWARD_CATEGORY): _OPTIONAL_STR,
        vol.Optional(const.DATA_REWARD_ASSIGNED_TO): _ID_LIST,
        vol.Optional(const.DATA_REWARD_TYPE): vol.Any(
            None, vol.In([reward_type.value for reward_type in RewardType])
        ),
        vol.Optional(const.DATA_REWARD_REQUIRED_TASK_ID): _OPTIONAL_STR,
        vol.Optional(const.DATA_REWARD_REQUIRED_TASK_COUNT): _OPTIONAL_NUMBER,
    },
    extra=vol.ALLOW_EXTRA,
)

LOG_IMPORT_SCHEMA = vol.Schema(
    {
        vol.Required(const.DATA_LOG_ID): str,
        vol.Required(const.DATA_LOG_CHILD_ID): str,
        vol.Required(const.DATA_LOG_TASK_ID): str,
        vol.Required(const.DATA_LOG_STATUS): vol.In([status.value for status in LogStatus]),
        vol.Required(const.DATA_LOG_COMPLETED_AT): str,
        vol.Optional(const.DATA_LOG_CURRENT_VALUE): _OPTIONAL_NUMBER,
        vol.Optional(const.DATA_LOG_REJECTION_REASON): _OPTIONAL_STR,
        vol.Optional(const.DATA_LOG_NOTES): _OPTIONAL_STR,
        vol.Optional(const.DATA_LOG_VERIFIED_AT): _OPTIONAL_STR,
    },
    extra=vol.ALLOW_EXTRA,
)

TRANSACTION_IMPORT_SCHEMA = vol.Schema(
    {
        vol.Required(const.DATA_TRANSACTION_ID): str,
        vol.Required(const.DATA_TRANSACTION_CHILD_ID): str,
        vol.Required(const.DATA_TRANSACTION_AMOUNT): _NUMBER,
        vol.Required(const.DATA_TRANSACTION_TYPE): vol.In(
            [txn_type.value for txn_type in TransactionType]
        ),
        vol.Optional(const.DATA_TRANSACTION_REFERENCE_ID): _OPTIONAL_STR,
        vol.Optional(const.DATA_TRANSACTION_DESCRIPTION): _OPTIONAL_STR,
        vol.Required(const.DATA_TRANSACTION_CREATED_AT): str,
    },
    extra=vol.ALLOW_EXTRA,
)

IMPORT_PAYLOAD_SCHEMA = vol.Schema(
    {
        vol.Optional(const.DATA_CHILDREN): vol.Any(None, [CHILD_IMPORT_SCHEMA]),
        vol.Optional(const.DATA_TASKS): vol.Any(None, [TASK_IMPORT_SCHEMA]),
        vol.Optional(const.DATA_REWARDS): vol.Any(None, [REWARD_IMPORT_SCHEMA]),
        vol.Optional(const.DATA_LOGS): vol.Any(None, [LOG_IMPORT_SCHEMA]),
        vol.Optional(const.IMPORT_LEGACY_CHILD_LOGS): vol.Any(
            None, [LOG_IMPORT_SCHEMA]
        ),
        vol.Optional(const.DATA_TRANSACTIONS): vol.Any(
            None, [TRANSACTION_IMPORT_SCHEMA]
        ),
        vol.Optional(const.IMPORT_LAST_MISSED_CHECK_DATE): _OPTIONAL_STR,
    },
    extra=vol.ALLOW_EXTRA,
)


def validate_import_payload(payload: Any) -> ImportPayload:
    """Validate a whole-database import payload.

    Args:
        payload: Parsed JSON object (list-shaped buckets, as exported)

    Returns:
        The validated payload

    Raises:
        StarHabitValidationError: With the path of the first offending value
    """
    if not isinstance(payload, dict):
        raise StarHabitValidationError("Import payload must be an object")
    try:
        return IMPORT_PAYLOAD_SCHEMA(payload)
    except vol.Invalid as err:
        const.LOGGER.warning(
            "Import payload rejected at %s: %s", err.path, err.error_message
        )
        raise StarHabitValidationError(
            f"Invalid import data: {err}", path=list(err.path)
        ) from err


def normalize_import_payload(payload: ImportPayload) -> dict[str, Any]:
    """Convert a validated import payload into the store's data structure.

    Lists become id-keyed dicts (later duplicates win), the legacy
    `childLogs` key is merged into logs, and missing optional fields receive
    their defaults. Unknown top-level keys are ignored.
    """
    data = StarHabitStore.get_default_structure()
    # Tasks without a creation time count as created now: nothing to backfill
    imported_at = dt_now_iso()

    for child in payload.get(const.DATA_CHILDREN) or []:
        record = dict(child)
        record[const.DATA_CHILD_CURRENT_BALANCE] = int(
            record.get(const.DATA_CHILD_CURRENT_BALANCE) or 0
        )
        data[const.DATA_CHILDREN][record[const.DATA_CHILD_ID]] = record

    for task in payload.get(const.DATA_TASKS) or []:
        record = dict(task)
        record[const.DATA_TASK_REWARD_VALUE] = int(record[const.DATA_TASK_REWARD_VALUE])
        record[const.DATA_TASK_RECURRENCE_RULE] = (
            record.get(const.DATA_TASK_RECURRENCE_RULE)
            or const.DEFAULT_RECURRENCE_RULE
        )
        record[const.DATA_TASK_IS_ACTIVE] = record.get(const.DATA_TASK_IS_ACTIVE) is not False
        record[const.DATA_TASK_CREATED_AT] = (
            record.get(const.DATA_TASK_CREATED_AT) or imported_at
        )
        record[const.DATA_TASK_ASSIGNED_TO] = _normalize_list_field(
            record.get(const.DATA_TASK_ASSIGNED_TO)
        )
        record[const.DATA_TASK_CURRENT_STREAK] = int(
            record.get(const.DATA_TASK_CURRENT_STREAK) or 0
        )
        record[const.DATA_TASK_BEST_STREAK] = int(
            record.get(const.DATA_TASK_BEST_STREAK) or 0
        )
        record[const.DATA_TASK_MAX_COMPLETIONS_PER_DAY] = int(
            record.get(const.DATA_TASK_MAX_COMPLETIONS_PER_DAY)
            or const.DEFAULT_MAX_COMPLETIONS_PER_DAY
        )
        data[const.DATA_TASKS][record[const.DATA_TASK_ID]] = record

    for reward in payload.get(const.DATA_REWARDS) or []:
        record = dict(reward)
        record[const.DATA_REWARD_COST_VALUE] = int(record[const.DATA_REWARD_COST_VALUE])
        record[const.DATA_REWARD_ASSIGNED_TO] = _normalize_list_field(
            record.get(const.DATA_REWARD_ASSIGNED_TO)
        )
        record[const.DATA_REWARD_TYPE] = (
            record.get(const.DATA_REWARD_TYPE) or const.DEFAULT_REWARD_TYPE
        )
        if record.get(const.DATA_REWARD_REQUIRED_TASK_COUNT) is not None:
            record[const.DATA_REWARD_REQUIRED_TASK_COUNT] = int(
                record[const.DATA_REWARD_REQUIRED_TASK_COUNT]
            )
        data[const.DATA_REWARDS][record[const.DATA_REWARD_ID]] = record

    logs = [
        *(payload.get(const.IMPORT_LEGACY_CHILD_LOGS) or []),
        *(payload.get(const.DATA_LOGS) or []),
    ]
    for log in logs:
        data[const.DATA_LOGS][log[const.DATA_LOG_ID]] = dict(log)

    for transaction in payload.get(const.DATA_TRANSACTIONS) or []:
        record = dict(transaction)
        record[const.DATA_TRANSACTION_AMOUNT] = int(record[const.DATA_TRANSACTION_AMOUNT])
        record.setdefault(const.DATA_TRANSACTION_REFERENCE_ID, None)
        data[const.DATA_TRANSACTIONS][record[const.DATA_TRANSACTION_ID]] = record

    data[const.DATA_META][const.DATA_META_LAST_MISSED_CHECK_DATE] = payload.get(
        const.IMPORT_LAST_MISSED_CHECK_DATE
    )
    return data
