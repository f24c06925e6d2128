"""Economy Manager - Star transactions and ledger management.

This manager handles all star-related operations:
- Redemptions (removing stars with NSF checks)
- Manual adjustments (signed bonus/penalty, may go negative)
- Deleting transactions and logs with balance reversal
- Ledger queries (balance, newest-first history, balance audit)

ARCHITECTURE:
- EconomyManager = "The Bank" (STATEFUL star operations)
- EconomyEngine = Pure math and ledger logic (STATELESS)

Every balance change is paired with a transaction append (or the removal of
one) inside the same store write, so a child's current_balance always equals
the sum of their transactions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .. import const
from ..const import TransactionType
from ..engines.economy_engine import EconomyEngine, InsufficientFundsError
from .base_manager import BaseManager, MutationAborted

if TYPE_CHECKING:
    from ..type_defs import RewardData, TransactionData


# Re-export exception for external use
__all__ = ["EconomyManager", "InsufficientFundsError"]


class EconomyManager(BaseManager):
    """Manager for all star transactions and ledger operations.

    Responsibilities:
    - Execute redemptions and adjustments
    - Maintain the append-only transaction ledger
    - Keep the cached balance in step with the ledger

    NOT responsible for:
    - Deciding when a mission pays out (MissionManager calls apply_transaction)
    """

    # =========================================================================
    # Write helpers (used inside an open mutate() block)
    # =========================================================================

    @staticmethod
    def apply_transaction(
        data: dict[str, Any],
        child_id: str,
        amount: int,
        transaction_type: TransactionType,
        *,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> TransactionData:
        """Append a transaction and move the child's balance by its amount.

        Must be called on the working copy of an open mutate() block; the
        caller has already checked that the child exists.

        Returns:
            The stored TransactionData
        """
        child = data[const.DATA_CHILDREN][child_id]
        entry = EconomyEngine.create_transaction(
            child_id=child_id,
            amount=amount,
            transaction_type=transaction_type,
            reference_id=reference_id,
            description=description,
        )
        data[const.DATA_TRANSACTIONS][entry[const.DATA_TRANSACTION_ID]] = entry

        current_balance = int(child.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)
        child[const.DATA_CHILD_CURRENT_BALANCE] = EconomyEngine.calculate_new_balance(
            current_balance, entry[const.DATA_TRANSACTION_AMOUNT]
        )
        return entry

    @staticmethod
    def remove_transaction(data: dict[str, Any], transaction_id: str) -> bool:
        """Remove a transaction and reverse its effect on the balance.

        Must be called on the working copy of an open mutate() block. A
        transaction whose child no longer exists is simply removed.
        """
        entry = data[const.DATA_TRANSACTIONS].pop(transaction_id, None)
        if entry is None:
            return False

        child = data[const.DATA_CHILDREN].get(entry[const.DATA_TRANSACTION_CHILD_ID])
        if child is not None:
            current_balance = int(child.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)
            child[const.DATA_CHILD_CURRENT_BALANCE] = (
                EconomyEngine.calculate_new_balance(
                    current_balance, -int(entry[const.DATA_TRANSACTION_AMOUNT] or 0)
                )
            )
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_balance(self, child_id: str) -> int:
        """Get current star balance for a child.

        Returns:
            Current balance, or 0 if the child is not found
        """
        child = self._get_child(child_id)
        if not child:
            const.LOGGER.warning(
                "EconomyManager.get_balance: Child ID '%s' not found",
                child_id,
            )
            return 0
        return int(child.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)

    def get_history(
        self,
        child_id: str | None = None,
        limit: int = const.DEFAULT_HISTORY_LIMIT,
    ) -> list[TransactionData]:
        """Get recent transactions, newest first.

        Args:
            child_id: Restrict to one child (None = all children)
            limit: Maximum entries to return
        """
        entries = self.data[const.DATA_TRANSACTIONS].values()
        if child_id is not None:
            entries = [
                entry
                for entry in entries
                if entry.get(const.DATA_TRANSACTION_CHILD_ID) == child_id
            ]
        return [dict(entry) for entry in EconomyEngine.sort_newest_first(entries, limit)]

    def audit_balances(self) -> dict[str, tuple[int, int]]:
        """Find children whose cached balance disagrees with the ledger.

        Returns:
            {child_id: (cached_balance, ledger_sum)} for mismatches only
        """
        transactions = list(self.data[const.DATA_TRANSACTIONS].values())
        mismatches: dict[str, tuple[int, int]] = {}
        for child_id, child in self.data[const.DATA_CHILDREN].items():
            cached = int(child.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)
            computed = EconomyEngine.sum_transactions(transactions, child_id)
            if cached != computed:
                mismatches[child_id] = (cached, computed)

        if mismatches:
            const.LOGGER.warning(
                "EconomyManager.audit_balances: %d balance(s) out of step with the ledger",
                len(mismatches),
            )
        return mismatches

    # =========================================================================
    # Mutations
    # =========================================================================

    def redeem(self, child_id: str, cost: int, reward_id: str | None = None) -> bool:
        """Spend stars, refusing if the balance is insufficient.

        Args:
            child_id: The child spending stars
            cost: Stars to remove (>= 0)
            reward_id: Catalog reward id; without one the entry is a MANUAL_ADJ

        Returns:
            True if redeemed, False if the child is unknown or funds are short
            (nothing is written in that case)

        Raises:
            ValueError: If cost is negative
        """
        if cost < 0:
            raise ValueError(f"Redeem cost must be positive, got {cost}")

        transaction_type = (
            TransactionType.REWARD_REDEEMED if reward_id else TransactionType.MANUAL_ADJ
        )
        try:
            with self._store.mutate() as data:
                entry = self._withdraw(
                    data, "redeem", child_id, cost, transaction_type, reward_id
                )
        except InsufficientFundsError as err:
            self._log_nsf("redeem", err)
            return False
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "EconomyManager.redeem: child=%s, cost=%d, reward=%s, transaction=%s",
            child_id,
            cost,
            reward_id,
            entry[const.DATA_TRANSACTION_ID],
        )
        return True

    def redeem_reward(self, child_id: str, reward_id: str) -> bool:
        """Redeem a catalog reward at its listed cost.

        Refused (False) when the reward is unknown, assigned to other
        children only, already claimed (ONE_TIME rewards and free
        ACCUMULATIVE milestones) or still locked (ACCUMULATIVE rewards
        before the child has enough VERIFIED logs of the required task).
        """
        try:
            with self._store.mutate() as data:
                reward = self._get_reward(reward_id, data)
                if reward is None:
                    const.LOGGER.warning(
                        "EconomyManager.redeem_reward: Reward ID '%s' not found",
                        reward_id,
                    )
                    raise MutationAborted

                assigned_to = reward.get(const.DATA_REWARD_ASSIGNED_TO) or []
                if assigned_to and child_id not in assigned_to:
                    const.LOGGER.warning(
                        "EconomyManager.redeem_reward: Reward '%s' is not available to child '%s'",
                        reward_id,
                        child_id,
                    )
                    raise MutationAborted

                self._check_reward_unlocked(data, child_id, reward)
                self._withdraw(
                    data,
                    "redeem_reward",
                    child_id,
                    int(reward.get(const.DATA_REWARD_COST_VALUE) or 0),
                    TransactionType.REWARD_REDEEMED,
                    reward_id,
                )
        except InsufficientFundsError as err:
            self._log_nsf("redeem_reward", err)
            return False
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "EconomyManager.redeem_reward: child=%s, reward=%s", child_id, reward_id
        )
        return True

    def manual_adjustment(
        self, child_id: str, amount: int, reason: str | None = None
    ) -> bool:
        """Apply an unconditional signed adjustment (balance may go negative).

        Returns:
            True if applied, False if the child is unknown
        """
        try:
            with self._store.mutate() as data:
                if self._get_child(child_id, data) is None:
                    const.LOGGER.warning(
                        "EconomyManager.manual_adjustment: Child ID '%s' not found",
                        child_id,
                    )
                    raise MutationAborted
                self.apply_transaction(
                    data,
                    child_id,
                    amount,
                    TransactionType.MANUAL_ADJ,
                    description=reason,
                )
        except MutationAborted as err:
            return err.result

        const.LOGGER.debug(
            "EconomyManager.manual_adjustment: child=%s, amount=%d, reason=%s",
            child_id,
            amount,
            reason,
        )
        return True

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction, reversing its effect on the balance."""
        try:
            with self._store.mutate() as data:
                if not self.remove_transaction(data, transaction_id):
                    const.LOGGER.warning(
                        "EconomyManager.delete_transaction: Transaction ID '%s' not found",
                        transaction_id,
                    )
                    raise MutationAborted
        except MutationAborted as err:
            return err.result

        const.LOGGER.info(
            "EconomyManager.delete_transaction: Removed transaction %s",
            transaction_id,
        )
        return True

    def delete_child_log(self, log_id: str) -> bool:
        """Delete a log together with the TASK_VERIFIED entries it produced.

        The reward of a VERIFIED log (and any reversal written when it was
        marked failed) is taken back out of the balance before the log goes.
        """
        try:
            with self._store.mutate() as data:
                if self._get_log(log_id, data) is None:
                    const.LOGGER.warning(
                        "EconomyManager.delete_child_log: Log ID '%s' not found",
                        log_id,
                    )
                    raise MutationAborted

                linked = EconomyEngine.find_by_reference(
                    data[const.DATA_TRANSACTIONS].values(),
                    log_id,
                    TransactionType.TASK_VERIFIED,
                )
                for entry in linked:
                    self.remove_transaction(data, entry[const.DATA_TRANSACTION_ID])
                del data[const.DATA_LOGS][log_id]
        except MutationAborted as err:
            return err.result

        const.LOGGER.info(
            "EconomyManager.delete_child_log: Removed log %s and %d linked transaction(s)",
            log_id,
            len(linked),
        )
        return True

    # =========================================================================
    # Private helpers
    # =========================================================================

    def _withdraw(
        self,
        data: dict[str, Any],
        operation: str,
        child_id: str,
        cost: int,
        transaction_type: TransactionType,
        reference_id: str | None,
    ) -> TransactionData:
        """Check the child and their funds on the working copy, then debit."""
        child = self._get_child(child_id, data)
        if child is None:
            const.LOGGER.warning(
                "EconomyManager.%s: Child ID '%s' not found", operation, child_id
            )
            raise MutationAborted

        current_balance = int(child.get(const.DATA_CHILD_CURRENT_BALANCE) or 0)
        if not EconomyEngine.validate_sufficient_funds(current_balance, cost):
            raise InsufficientFundsError(
                child_id=child_id,
                current_balance=current_balance,
                requested_amount=cost,
            )
        return self.apply_transaction(
            data, child_id, -cost, transaction_type, reference_id=reference_id
        )

    @staticmethod
    def _check_reward_unlocked(
        data: dict[str, Any], child_id: str, reward: RewardData
    ) -> None:
        """Raise MutationAborted if the child may not claim the reward now."""
        reward_id = reward[const.DATA_REWARD_ID]
        if EconomyEngine.is_single_claim(reward) and EconomyEngine.has_redeemed(
            data[const.DATA_TRANSACTIONS].values(), child_id, reward_id
        ):
            const.LOGGER.info(
                "EconomyManager.redeem_reward: Reward '%s' already redeemed by child '%s'",
                reward_id,
                child_id,
            )
            raise MutationAborted

        progress = EconomyEngine.accumulative_progress(
            reward, data[const.DATA_LOGS].values(), child_id
        )
        if progress is not None and progress[0] < progress[1]:
            const.LOGGER.info(
                "EconomyManager.redeem_reward: Reward '%s' locked for child '%s' (%d/%d)",
                reward_id,
                child_id,
                progress[0],
                progress[1],
            )
            raise MutationAborted

    @staticmethod
    def _log_nsf(operation: str, err: InsufficientFundsError) -> None:
        const.LOGGER.info(
            "EconomyManager.%s: NSF for child=%s, balance=%d, requested=%d",
            operation,
            err.child_id,
            err.current_balance,
            err.requested_amount,
        )
