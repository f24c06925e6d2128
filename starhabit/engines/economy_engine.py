"""Economy Engine - Pure logic for star transactions and ledger arithmetic.

This engine provides stateless, pure Python functions for:
- Transaction entry creation
- Sufficient funds validation (NSF checks)
- Balance recomputation from the ledger
- Ledger queries (newest-first history, reward reversal lookup)

ARCHITECTURE: This is a pure logic engine with NO store access.
All functions are static methods that operate on passed-in data.
State management belongs in EconomyManager.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING
import uuid

from .. import const
from ..const import LogStatus, RewardType, TransactionType
from ..utils.dt_utils import dt_now_iso, dt_parse

if TYPE_CHECKING:
    from ..type_defs import RewardData, TaskLogData, TransactionData


class InsufficientFundsError(Exception):
    """Raised when a withdrawal would result in negative balance.

    Attributes:
        child_id: The child attempting the withdrawal
        current_balance: Current star balance
        requested_amount: Amount attempted to withdraw
        shortfall: How much more is needed (requested - current)
    """

    def __init__(
        self,
        child_id: str,
        current_balance: int,
        requested_amount: int,
    ) -> None:
        """Initialize InsufficientFundsError."""
        self.child_id = child_id
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.shortfall = requested_amount - current_balance
        super().__init__(
            f"Insufficient funds for child {child_id}: "
            f"balance={current_balance}, requested={requested_amount}, "
            f"shortfall={self.shortfall}"
        )


class EconomyEngine:
    """Pure logic engine for star calculations and ledger operations.

    All methods are static - no instance state.

    Transaction types:
        - TASK_VERIFIED: Stars earned from a verified mission (negative when
          an admin reverses the verification)
        - REWARD_REDEEMED: Stars spent on a catalog reward
        - MANUAL_ADJ: Ad-hoc bonus/penalty, or a redemption without reward id
    """

    @staticmethod
    def validate_sufficient_funds(balance: int, cost: int) -> bool:
        """Check if balance is sufficient for a withdrawal.

        Returns:
            True if balance >= cost, False otherwise (NSF)
        """
        return balance >= cost

    @staticmethod
    def create_transaction(
        child_id: str,
        amount: int,
        transaction_type: TransactionType,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> TransactionData:
        """Create an immutable ledger entry.

        Args:
            child_id: Child the entry belongs to
            amount: Signed amount (positive = earn, negative = spend)
            transaction_type: TransactionType member
            reference_id: Originating log or reward id
            description: Optional free text (adjustment reason)

        Returns:
            TransactionData ready to be stored
        """
        entry: TransactionData = {
            const.DATA_TRANSACTION_ID: str(uuid.uuid4()),
            const.DATA_TRANSACTION_CHILD_ID: child_id,
            const.DATA_TRANSACTION_AMOUNT: int(amount),
            const.DATA_TRANSACTION_TYPE: transaction_type,
            const.DATA_TRANSACTION_REFERENCE_ID: reference_id,
            const.DATA_TRANSACTION_CREATED_AT: dt_now_iso(),
        }
        if description:
            entry[const.DATA_TRANSACTION_DESCRIPTION] = description
        return entry

    @staticmethod
    def calculate_new_balance(current_balance: int, delta: int) -> int:
        """Calculate new balance after applying delta."""
        return int(current_balance) + int(delta)

    @staticmethod
    def sum_transactions(
        transactions: Iterable[TransactionData], child_id: str
    ) -> int:
        """Recompute a child's balance from the ledger."""
        return sum(
            int(entry.get(const.DATA_TRANSACTION_AMOUNT) or 0)
            for entry in transactions
            if entry.get(const.DATA_TRANSACTION_CHILD_ID) == child_id
        )

    @staticmethod
    def find_by_reference(
        transactions: Iterable[TransactionData],
        reference_id: str,
        transaction_type: TransactionType | None = None,
    ) -> list[TransactionData]:
        """Return ledger entries pointing at a log or reward id."""
        return [
            entry
            for entry in transactions
            if entry.get(const.DATA_TRANSACTION_REFERENCE_ID) == reference_id
            and (
                transaction_type is None
                or entry.get(const.DATA_TRANSACTION_TYPE) == transaction_type
            )
        ]

    @staticmethod
    def sort_newest_first(
        transactions: Iterable[TransactionData],
        limit: int | None = None,
    ) -> list[TransactionData]:
        """Return entries ordered newest-first, optionally truncated.

        Timestamps are compared as instants, so entries written under
        different UTC offsets (or imported with a `Z` suffix) still sort
        chronologically. Unparseable timestamps sort last.
        """
        ordered = sorted(
            transactions,
            key=_created_sort_key,
            reverse=True,
        )
        return ordered[:limit] if limit is not None else ordered

    # =========================================================================
    # REWARD RULES
    # =========================================================================

    @staticmethod
    def is_single_claim(reward: RewardData) -> bool:
        """Return True for rewards a child may redeem only once.

        ONE_TIME rewards, and ACCUMULATIVE milestones that cost nothing.
        """
        reward_type = reward.get(const.DATA_REWARD_TYPE) or const.DEFAULT_REWARD_TYPE
        if reward_type == RewardType.ONE_TIME:
            return True
        return (
            reward_type == RewardType.ACCUMULATIVE
            and int(reward.get(const.DATA_REWARD_COST_VALUE) or 0) == 0
        )

    @staticmethod
    def has_redeemed(
        transactions: Iterable[TransactionData], child_id: str, reward_id: str
    ) -> bool:
        """Return True if the child already has a REWARD_REDEEMED entry for it."""
        return any(
            entry.get(const.DATA_TRANSACTION_CHILD_ID) == child_id
            for entry in EconomyEngine.find_by_reference(
                transactions, reward_id, TransactionType.REWARD_REDEEMED
            )
        )

    @staticmethod
    def accumulative_progress(
        reward: RewardData, logs: Iterable[TaskLogData], child_id: str
    ) -> tuple[int, int] | None:
        """Return (verified count, required count) for an ACCUMULATIVE reward.

        Returns None for other reward types and for rewards without a
        required task.
        """
        required_task_id = reward.get(const.DATA_REWARD_REQUIRED_TASK_ID)
        if (
            reward.get(const.DATA_REWARD_TYPE) != RewardType.ACCUMULATIVE
            or not required_task_id
        ):
            return None
        completed = sum(
            1
            for log in logs
            if log.get(const.DATA_LOG_CHILD_ID) == child_id
            and log.get(const.DATA_LOG_TASK_ID) == required_task_id
            and log.get(const.DATA_LOG_STATUS) == LogStatus.VERIFIED
        )
        required = int(
            reward.get(const.DATA_REWARD_REQUIRED_TASK_COUNT)
            or const.DEFAULT_REQUIRED_TASK_COUNT
        )
        return completed, required


def _created_sort_key(entry: TransactionData) -> float:
    """Sort key: created_at as a POSIX timestamp."""
    parsed = dt_parse(entry.get(const.DATA_TRANSACTION_CREATED_AT))
    return parsed.timestamp() if parsed else float("-inf")
