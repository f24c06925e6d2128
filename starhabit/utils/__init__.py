# File: utils/__init__.py
"""Pure Python utilities for StarHabit.

Functions here have no dependency on the store or managers and can be unit
tested in isolation.

Submodules:
    - dt_utils: Local-day calendar arithmetic, parsing and time-of-day helpers

Usage:
    from . import dt_utils
    from .dt_utils import dt_today_local
"""

from . import dt_utils

__all__ = ["dt_utils"]
