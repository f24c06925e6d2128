"""Engine modules for StarHabit.

Contains pure computation engines:
- recurrence_engine: Rule string codec and date-validity predicate
- mission_engine: Occurrence state machine, backfill/expiry planning, streaks
- economy_engine: Star transactions and ledger arithmetic
"""

from .economy_engine import EconomyEngine, InsufficientFundsError
from .mission_engine import STATE_ACTIVE, FailureItem, MissionEngine
from .recurrence_engine import RecurrenceEngine, RecurrenceOptions

__all__ = [
    "STATE_ACTIVE",
    "EconomyEngine",
    "FailureItem",
    "InsufficientFundsError",
    "MissionEngine",
    "RecurrenceEngine",
    "RecurrenceOptions",
]
