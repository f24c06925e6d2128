"""Tests for data_builders: entity builders and import validation."""

from __future__ import annotations

from typing import Any

from freezegun import freeze_time
import pytest

from starhabit import const
from starhabit.const import LogStatus
from starhabit.data_builders import (
    EntityValidationError,
    build_child,
    build_log,
    build_reward,
    build_task,
    normalize_import_payload,
    validate_import_payload,
)
from starhabit.exceptions import StarHabitValidationError

# =============================================================================
# Children
# =============================================================================


class TestBuildChild:
    """Tests for build_child."""

    def test_create_defaults(self) -> None:
        """New children get an id, a stripped name and a zero balance."""
        child = build_child({const.DATA_CHILD_NAME: "  Alice "})
        assert child[const.DATA_CHILD_ID]
        assert child[const.DATA_CHILD_NAME] == "Alice"
        assert child[const.DATA_CHILD_CURRENT_BALANCE] == 0
        assert child[const.DATA_CHILD_AVATAR_URL] is None

    def test_balance_ignored_from_input(self) -> None:
        """Balances only move through the ledger."""
        existing = build_child({const.DATA_CHILD_NAME: "Alice"})
        existing[const.DATA_CHILD_CURRENT_BALANCE] = 12

        updated = build_child(
            {const.DATA_CHILD_CURRENT_BALANCE: 999, const.DATA_CHILD_BIRTH_DATE: "2016-04-01"},
            existing=existing,
        )

        assert updated[const.DATA_CHILD_ID] == existing[const.DATA_CHILD_ID]
        assert updated[const.DATA_CHILD_NAME] == "Alice"
        assert updated[const.DATA_CHILD_CURRENT_BALANCE] == 12
        assert updated[const.DATA_CHILD_BIRTH_DATE] == "2016-04-01"

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_name_required(self, name: Any) -> None:
        """Blank names are rejected with the field attached."""
        with pytest.raises(EntityValidationError) as exc_info:
            build_child({const.DATA_CHILD_NAME: name})
        assert exc_info.value.field == const.DATA_CHILD_NAME
        assert exc_info.value.reason == "required"
        assert exc_info.value.code == const.ErrorCode.VALIDATION_ERROR


# =============================================================================
# Tasks
# =============================================================================


class TestBuildTask:
    """Tests for build_task."""

    @freeze_time("2024-01-05 15:00:00")
    def test_create_defaults(self) -> None:
        """Missing fields receive their defaults."""
        task = build_task({const.DATA_TASK_NAME: "Make bed"})

        assert task[const.DATA_TASK_REWARD_VALUE] == 0
        assert task[const.DATA_TASK_RECURRENCE_RULE] == "Daily"
        assert task[const.DATA_TASK_IS_ACTIVE] is True
        assert task[const.DATA_TASK_ASSIGNED_TO] == []
        assert task[const.DATA_TASK_MAX_COMPLETIONS_PER_DAY] == 1
        assert task[const.DATA_TASK_CURRENT_STREAK] == 0
        assert task[const.DATA_TASK_NEXT_DUE_DATE] is None
        assert task[const.DATA_TASK_CREATED_AT] == "2024-01-05T10:00:00-05:00"

    @freeze_time("2024-01-05 15:00:00")
    def test_once_task_defaults_to_today(self) -> None:
        """One-off tasks without a date are due the day they are created."""
        task = build_task(
            {const.DATA_TASK_NAME: "Clean garage", const.DATA_TASK_RECURRENCE_RULE: "Once"}
        )
        assert task[const.DATA_TASK_NEXT_DUE_DATE] == "2024-01-05"

    def test_update_preserves_created_at_and_streaks(self) -> None:
        """Updates keep identity, creation time and streak counters."""
        with freeze_time("2024-01-01 12:00:00"):
            original = build_task({const.DATA_TASK_NAME: "Make bed"})
        original[const.DATA_TASK_CURRENT_STREAK] = 4

        with freeze_time("2024-02-01 12:00:00"):
            updated = build_task(
                {const.DATA_TASK_EXPIRY_TIME: "20:00"}, existing=original
            )

        assert updated[const.DATA_TASK_ID] == original[const.DATA_TASK_ID]
        assert updated[const.DATA_TASK_CREATED_AT] == original[const.DATA_TASK_CREATED_AT]
        assert updated[const.DATA_TASK_CURRENT_STREAK] == 4
        assert updated[const.DATA_TASK_EXPIRY_TIME] == "20:00"

    def test_assigned_to_normalized(self) -> None:
        """A single id becomes a list."""
        task = build_task(
            {const.DATA_TASK_NAME: "Walk dog", const.DATA_TASK_ASSIGNED_TO: "c1"}
        )
        assert task[const.DATA_TASK_ASSIGNED_TO] == ["c1"]

    @pytest.mark.parametrize(
        ("field", "value", "reason"),
        [
            (const.DATA_TASK_REWARD_VALUE, -1, "negative"),
            (const.DATA_TASK_REWARD_VALUE, "lots", "not_a_number"),
            (const.DATA_TASK_EXPIRY_TIME, "8pm", "invalid_time"),
            (const.DATA_TASK_MAX_COMPLETIONS_PER_DAY, 0, "below_minimum"),
            (const.DATA_TASK_TOTAL_TARGET_VALUE, 0, "below_minimum"),
        ],
    )
    def test_invalid_fields(self, field: str, value: Any, reason: str) -> None:
        """Business rule violations name the offending field."""
        with pytest.raises(EntityValidationError) as exc_info:
            build_task({const.DATA_TASK_NAME: "Make bed", field: value})
        assert exc_info.value.field == field
        assert exc_info.value.reason == reason

    def test_unknown_rule_is_kept(self) -> None:
        """Recurrence text is never rejected at build time."""
        task = build_task(
            {const.DATA_TASK_NAME: "Odd", const.DATA_TASK_RECURRENCE_RULE: "whenever"}
        )
        assert task[const.DATA_TASK_RECURRENCE_RULE] == "whenever"


# =============================================================================
# Rewards and logs
# =============================================================================


class TestBuildRewardAndLog:
    """Tests for build_reward and build_log."""

    def test_reward(self) -> None:
        """Rewards validate cost and keep their category."""
        reward = build_reward(
            {
                const.DATA_REWARD_NAME: "Ice cream",
                const.DATA_REWARD_COST_VALUE: 20,
                const.DATA_REWARD_CATEGORY: "treat",
            }
        )
        assert reward[const.DATA_REWARD_COST_VALUE] == 20
        assert reward[const.DATA_REWARD_ASSIGNED_TO] == []

        with pytest.raises(EntityValidationError):
            build_reward({const.DATA_REWARD_NAME: "Toy", const.DATA_REWARD_COST_VALUE: -5})

    def test_reward_types(self) -> None:
        """ACCUMULATIVE rewards need a task; other types drop the requirement."""
        reward = build_reward(
            {
                const.DATA_REWARD_NAME: "New book",
                const.DATA_REWARD_TYPE: "ACCUMULATIVE",
                const.DATA_REWARD_REQUIRED_TASK_ID: "t1",
            }
        )
        assert reward[const.DATA_REWARD_REQUIRED_TASK_COUNT] == 1

        switched = build_reward({const.DATA_REWARD_TYPE: "ONE_TIME"}, existing=reward)
        assert switched[const.DATA_REWARD_TYPE] == "ONE_TIME"
        assert switched[const.DATA_REWARD_REQUIRED_TASK_ID] is None
        assert switched[const.DATA_REWARD_REQUIRED_TASK_COUNT] is None

        with pytest.raises(EntityValidationError) as exc_info:
            build_reward(
                {const.DATA_REWARD_NAME: "Badge", const.DATA_REWARD_TYPE: "ACCUMULATIVE"}
            )
        assert exc_info.value.field == const.DATA_REWARD_REQUIRED_TASK_ID

        with pytest.raises(EntityValidationError) as exc_info:
            build_reward({const.DATA_REWARD_NAME: "Toy", const.DATA_REWARD_TYPE: "DAILY"})
        assert exc_info.value.reason == "invalid"

    def test_log_optional_fields(self) -> None:
        """Optional log fields are only present when given."""
        log = build_log("c1", "t1", LogStatus.PENDING, "2024-01-05T10:00:00-05:00")
        assert const.DATA_LOG_NOTES not in log
        assert const.DATA_LOG_CURRENT_VALUE not in log

        failed = build_log(
            "c1",
            "t1",
            LogStatus.FAILED,
            "2024-01-05T00:00:00-05:00",
            rejection_reason=const.REASON_MISSED_DEADLINE,
        )
        assert failed[const.DATA_LOG_REJECTION_REASON] == "Missed daily deadline"
        assert failed[const.DATA_LOG_ID] != log[const.DATA_LOG_ID]


# =============================================================================
# Import validation
# =============================================================================


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "children": [{"id": "c1", "name": "Alice", "current_balance": 7}],
        "tasks": [
            {
                "id": "t1",
                "name": "Brush teeth",
                "reward_value": 5,
                "recurrence_rule": "FREQ=DAILY",
                "assigned_to": ["c1"],
            }
        ],
        "rewards": [{"id": "r1", "name": "Sticker", "cost_value": 3}],
        "logs": [
            {
                "id": "l1",
                "child_id": "c1",
                "task_id": "t1",
                "status": "VERIFIED",
                "completed_at": "2024-01-04T08:00:00-05:00",
            }
        ],
        "transactions": [
            {
                "id": "x1",
                "child_id": "c1",
                "amount": 5,
                "type": "TASK_VERIFIED",
                "reference_id": "l1",
                "created_at": "2024-01-04T09:00:00-05:00",
            }
        ],
        "lastMissedCheckDate": "2024-01-04",
    }
    payload.update(overrides)
    return payload


class TestValidateImportPayload:
    """Tests for validate_import_payload."""

    def test_valid_payload_passes(self) -> None:
        """A well-formed export validates unchanged."""
        assert validate_import_payload(_payload()) == _payload()

    def test_not_an_object(self) -> None:
        """Top-level arrays are rejected."""
        with pytest.raises(StarHabitValidationError):
            validate_import_payload([])

    def test_bad_status_reports_path(self) -> None:
        """The error points at the offending value."""
        payload = _payload()
        payload["logs"][0]["status"] = "DONE"

        with pytest.raises(StarHabitValidationError) as exc_info:
            validate_import_payload(payload)

        assert exc_info.value.path == ["logs", 0, "status"]
        assert exc_info.value.code == const.ErrorCode.VALIDATION_ERROR

    def test_wrong_type_reports_path(self) -> None:
        """Numbers given as text are rejected."""
        payload = _payload()
        payload["tasks"][0]["reward_value"] = "five"

        with pytest.raises(StarHabitValidationError) as exc_info:
            validate_import_payload(payload)

        assert exc_info.value.path == ["tasks", 0, "reward_value"]

    def test_missing_required_field(self) -> None:
        """Records without an id are rejected."""
        with pytest.raises(StarHabitValidationError):
            validate_import_payload(_payload(rewards=[{"name": "Toy", "cost_value": 1}]))

    def test_unknown_keys_allowed(self) -> None:
        """Extra keys from newer exports do not fail validation."""
        validate_import_payload(_payload(settings={"theme": "dark"}))


class TestNormalizeImportPayload:
    """Tests for normalize_import_payload."""

    def test_lists_become_id_maps(self) -> None:
        """Buckets are keyed by id and the watermark lands in meta."""
        data = normalize_import_payload(_payload())

        assert data[const.DATA_CHILDREN]["c1"][const.DATA_CHILD_CURRENT_BALANCE] == 7
        assert data[const.DATA_TASKS]["t1"][const.DATA_TASK_IS_ACTIVE] is True
        assert data[const.DATA_TASKS]["t1"][const.DATA_TASK_MAX_COMPLETIONS_PER_DAY] == 1
        assert list(data[const.DATA_REWARDS]) == ["r1"]
        assert list(data[const.DATA_TRANSACTIONS]) == ["x1"]
        assert (
            data[const.DATA_META][const.DATA_META_LAST_MISSED_CHECK_DATE] == "2024-01-04"
        )

    def test_legacy_child_logs_merged(self) -> None:
        """childLogs from older exports join the logs bucket."""
        legacy = {
            "id": "l0",
            "child_id": "c1",
            "task_id": "t1",
            "status": "FAILED",
            "completed_at": "2024-01-03T00:00:00-05:00",
        }
        data = normalize_import_payload(_payload(childLogs=[legacy]))
        assert set(data[const.DATA_LOGS]) == {"l0", "l1"}

    def test_empty_payload(self) -> None:
        """An empty object yields an empty store without a watermark."""
        data = normalize_import_payload({})
        assert data[const.DATA_CHILDREN] == {}
        assert data[const.DATA_META][const.DATA_META_LAST_MISSED_CHECK_DATE] is None

    @freeze_time("2024-01-10 14:00:00")
    def test_missing_created_at_uses_import_time(self) -> None:
        """Tasks without a creation time are anchored at the import."""
        data = normalize_import_payload(_payload())
        assert data[const.DATA_TASKS]["t1"][const.DATA_TASK_CREATED_AT] == (
            "2024-01-10T09:00:00-05:00"
        )

        given = _payload()
        given["tasks"][0]["created_at"] = "2024-01-01T07:00:00-05:00"
        data = normalize_import_payload(given)
        assert data[const.DATA_TASKS]["t1"][const.DATA_TASK_CREATED_AT] == (
            "2024-01-01T07:00:00-05:00"
        )

    def test_reward_type_defaults(self) -> None:
        """Older exports without a reward type import as UNLIMITED."""
        payload = _payload()
        payload["rewards"].append(
            {
                "id": "r2",
                "name": "Badge",
                "cost_value": 0,
                "type": "ACCUMULATIVE",
                "required_task_id": "t1",
                "required_task_count": 3.0,
            }
        )
        data = normalize_import_payload(validate_import_payload(payload))

        assert data[const.DATA_REWARDS]["r1"][const.DATA_REWARD_TYPE] == "UNLIMITED"
        milestone = data[const.DATA_REWARDS]["r2"]
        assert milestone[const.DATA_REWARD_TYPE] == "ACCUMULATIVE"
        assert milestone[const.DATA_REWARD_REQUIRED_TASK_COUNT] == 3

    def test_unknown_reward_type_rejected(self) -> None:
        """Reward types outside the known set fail validation with a path."""
        payload = _payload()
        payload["rewards"][0]["type"] = "WEEKLY"

        with pytest.raises(StarHabitValidationError) as exc_info:
            validate_import_payload(payload)

        assert exc_info.value.path == ["rewards", 0, "type"]
