# File: __init__.py
"""StarHabit mission core.

Tracks recurring missions assigned to children, pays out a star balance on
verification and reconstructs missed occurrences from locally persisted state.

Key Features:
- Compact recurrence rules (daily/weekly/monthly with interval, weekday set,
  month day or Nth weekday of the month).
- Backfill of missed occurrences across days the app was not opened.
- Occurrence lifecycle with exemptions and admin overrides.
- Append-only star ledger kept consistent with every balance change.

Typical use:
    coordinator = StarHabitCoordinator(StarHabitConfig.from_env())
    coordinator.run_missed_check()
"""

from .coordinator import StarHabitConfig, StarHabitCoordinator
from .data_builders import EntityValidationError
from .exceptions import StarHabitError, StarHabitStorageError, StarHabitValidationError
from .managers import MissionCheckResult
from .store import StarHabitStore

__all__ = [
    "EntityValidationError",
    "MissionCheckResult",
    "StarHabitConfig",
    "StarHabitCoordinator",
    "StarHabitError",
    "StarHabitStorageError",
    "StarHabitStore",
    "StarHabitValidationError",
]
