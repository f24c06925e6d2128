"""Stateful managers for StarHabit.

- economy_manager: Star ledger (redeem, adjust, delete, audit)
- mission_manager: Occurrence lifecycle (complete, verify, exemptions)
- scheduler_manager: Missed-occurrence backfill, expiry and streaks
"""

from .base_manager import BaseManager
from .economy_manager import EconomyManager
from .mission_manager import MissionManager
from .scheduler_manager import MissionCheckResult, SchedulerManager

__all__ = [
    "BaseManager",
    "EconomyManager",
    "MissionCheckResult",
    "MissionManager",
    "SchedulerManager",
]
