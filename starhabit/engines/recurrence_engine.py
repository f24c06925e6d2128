"""Recurrence Engine for StarHabit.

Encodes, decodes and evaluates the compact recurrence rule strings stored in
Task.recurrence_rule (a DAILY/WEEKLY/MONTHLY subset of RFC 5545 plus the
legacy literals "Daily", "Weekly", "Monthly" and "Once").

Decoding is total: any stored string yields a RecurrenceOptions, so rules
written by newer code never break scheduling. Literal shorthands are
normalised here, at parse time, and never special-cased by callers.

IMPORTANT: This module must NOT import from managers or the coordinator.
Only import from const.py, utils and standard libraries.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time
import re
from typing import ClassVar

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MONTHLY, MO, WEEKLY, rrule, weekday

from .. import const
from ..const import Frequency
from ..utils.dt_utils import (
    dt_add_days,
    dt_days_between,
    dt_local_date_of,
    dt_months_between,
    dt_start_of_week,
    dt_today_local,
    dt_weeks_between,
)

_SET_POS_DAY_RE = re.compile(r"^(-?\d+)([A-Z]{2})$")


@dataclass(frozen=True)
class RecurrenceOptions:
    """Decoded recurrence rule.

    Attributes:
        frequency: DAILY, WEEKLY, MONTHLY, or ONCE (no recurrence)
        interval: Repeat every N days/weeks/months (>= 1)
        by_day: Weekday codes (MO..SU); a set for WEEKLY, one code for MONTHLY
        by_month_day: Day of month 1..31 (MONTHLY only)
        by_set_pos: Ordinal of by_day[0] within the month: 1..4, or -1 for last
    """

    frequency: Frequency = Frequency.DAILY
    interval: int = 1
    by_day: tuple[str, ...] = ()
    by_month_day: int | None = None
    by_set_pos: int | None = None


class RecurrenceEngine:
    """Pure logic for recurrence rule strings.

    All methods are static - no instance state.
    """

    # Literal shorthands stored by older versions (matched case-insensitively)
    LEGACY_LITERALS: ClassVar[dict[str, Frequency]] = {
        "DAILY": Frequency.DAILY,
        "WEEKLY": Frequency.WEEKLY,
        "MONTHLY": Frequency.MONTHLY,
        "ONCE": Frequency.ONCE,
    }

    # Frequencies that may appear after FREQ=
    RULE_FREQUENCIES: ClassVar[frozenset[str]] = frozenset(
        {Frequency.DAILY, Frequency.WEEKLY, Frequency.MONTHLY}
    )

    # =========================================================================
    # Codec
    # =========================================================================

    @staticmethod
    def encode(options: RecurrenceOptions) -> str:
        """Generate a rule string from options.

        Args:
            options: Decoded recurrence options.

        Returns:
            Deterministic rule string, e.g. "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE".
            ONCE encodes as the literal "Once".
        """
        if options.frequency == Frequency.ONCE:
            return const.RRULE_LITERAL_ONCE

        parts = [f"{const.RRULE_KEY_FREQ}={options.frequency}"]

        if options.interval > 1:
            parts.append(f"{const.RRULE_KEY_INTERVAL}={options.interval}")

        if options.frequency == Frequency.WEEKLY and options.by_day:
            days = RecurrenceEngine._ordered_weekdays(options.by_day)
            parts.append(f"{const.RRULE_KEY_BYDAY}={','.join(days)}")

        if options.frequency == Frequency.MONTHLY:
            if options.by_month_day:
                parts.append(f"{const.RRULE_KEY_BYMONTHDAY}={options.by_month_day}")
            elif options.by_day and options.by_set_pos:
                parts.append(
                    f"{const.RRULE_KEY_BYDAY}={options.by_set_pos}{options.by_day[0]}"
                )

        return ";".join(parts)

    @staticmethod
    def decode(rule: str | None) -> RecurrenceOptions:
        """Parse a rule string into options.

        Never raises: unknown keys and malformed values are ignored, and an
        unusable rule decodes to DAILY with interval 1.

        Args:
            rule: Stored rule string (structured or legacy literal).

        Returns:
            RecurrenceOptions
        """
        if not rule or not isinstance(rule, str):
            return RecurrenceOptions()

        literal = RecurrenceEngine.LEGACY_LITERALS.get(rule.strip().upper())
        if literal is not None:
            return RecurrenceOptions(frequency=literal)

        # Collect KEY=VALUE pairs first so key order does not matter
        pairs: dict[str, str] = {}
        for part in rule.split(";"):
            key, sep, value = part.partition("=")
            if not sep:
                continue
            pairs[key.strip().upper()] = value.strip().upper()

        raw_freq = pairs.get(const.RRULE_KEY_FREQ, Frequency.DAILY)
        frequency = (
            Frequency(raw_freq)
            if raw_freq in RecurrenceEngine.RULE_FREQUENCIES
            else Frequency.DAILY
        )

        interval = RecurrenceEngine._parse_int(pairs.get(const.RRULE_KEY_INTERVAL))
        if interval is None or interval < 1:
            interval = 1

        by_day: tuple[str, ...] = ()
        by_month_day: int | None = None
        by_set_pos: int | None = None
        raw_by_day = pairs.get(const.RRULE_KEY_BYDAY)

        if frequency == Frequency.WEEKLY and raw_by_day:
            by_day = RecurrenceEngine._ordered_weekdays(
                code.strip() for code in raw_by_day.split(",")
            )

        if frequency == Frequency.MONTHLY:
            month_day = RecurrenceEngine._parse_int(
                pairs.get(const.RRULE_KEY_BYMONTHDAY)
            )
            if month_day is not None and 1 <= month_day <= 31:
                by_month_day = month_day
            elif raw_by_day:
                match = _SET_POS_DAY_RE.match(raw_by_day)
                if match:
                    pos, code = int(match.group(1)), match.group(2)
                    if pos in const.VALID_SET_POSITIONS and code in const.WEEKDAY_CODES:
                        by_set_pos = pos
                        by_day = (code,)

        return RecurrenceOptions(
            frequency=frequency,
            interval=interval,
            by_day=by_day,
            by_month_day=by_month_day,
            by_set_pos=by_set_pos,
        )

    # =========================================================================
    # Evaluation
    # =========================================================================

    @staticmethod
    def is_valid_on(day: date, options: RecurrenceOptions, anchor: date) -> bool:
        """Check whether a local calendar day is a due occurrence.

        Args:
            day: Local date to evaluate.
            options: Decoded rule.
            anchor: Local anchor date (task creation) for interval math.

        Returns:
            True if `day` is an occurrence of the rule.
        """
        weekday_code = const.WEEKDAY_CODES[day.weekday()]

        if options.frequency == Frequency.ONCE:
            return day == anchor

        if options.frequency == Frequency.DAILY:
            return dt_days_between(day, anchor) % options.interval == 0

        if options.frequency == Frequency.WEEKLY:
            diff_weeks = dt_weeks_between(day, anchor)
            if diff_weeks < 0 or diff_weeks % options.interval != 0:
                return False
            return not options.by_day or weekday_code in options.by_day

        # MONTHLY
        diff_months = dt_months_between(day, anchor)
        if diff_months < 0 or diff_months % options.interval != 0:
            return False

        if options.by_month_day:
            return day.day == options.by_month_day

        if options.by_set_pos and options.by_day:
            if weekday_code != options.by_day[0]:
                return False
            if options.by_set_pos == -1:
                # Last occurrence: one week later falls in the next month
                return (day + relativedelta(days=7)).month != day.month
            return (day.day - 1) // 7 + 1 == options.by_set_pos

        return True

    @staticmethod
    def next_due_date(
        rule: str | None,
        last_completed: date | str | None = None,
        *,
        anchor: date | str | None = None,
        today: date | None = None,
    ) -> str:
        """Calculate the next due local date for a rule.

        Builds a dateutil rrule anchored at the start of the anchor's period
        and takes the first occurrence on or after the day following
        `last_completed` (or today when never completed). Occurrences agree
        with is_valid_on.

        Args:
            rule: Stored rule string.
            last_completed: Local date (or ISO string) the task was last handled.
            anchor: Anchor for interval math. Defaults to last_completed, or
                today when never completed.
            today: Override for the current local date (deterministic tests).

        Returns:
            "YYYY-MM-DD", or "" for Once rules and when no occurrence falls
            within the search bound.
        """
        options = RecurrenceEngine.decode(rule)
        if options.frequency == Frequency.ONCE:
            return ""

        today = today or dt_today_local()
        last_day = dt_local_date_of(last_completed) if last_completed else None
        anchor_day = dt_local_date_of(anchor) if anchor else None
        if anchor_day is None:
            anchor_day = last_day or today

        candidate = dt_add_days(last_day, 1) if last_day else today
        start = datetime.combine(candidate, time())
        # NOTE: rrule.after() scans to year 9999 when nothing matches (day 31 of
        # every 12th February); hits past the search bound count as none
        occurrence = RecurrenceEngine.to_rrule(options, anchor_day, candidate).after(
            start, inc=True
        )
        if (
            occurrence is not None
            and dt_days_between(occurrence.date(), candidate)
            < const.MAX_NEXT_DUE_SEARCH_DAYS
        ):
            return occurrence.date().isoformat()

        const.LOGGER.error(
            "RecurrenceEngine.next_due_date: No occurrence within %s days for rule '%s'",
            const.MAX_NEXT_DUE_SEARCH_DAYS,
            rule,
        )
        return ""

    @staticmethod
    def to_rrule(options: RecurrenceOptions, anchor: date, search_from: date) -> rrule:
        """Build the dateutil rrule equivalent of decoded options.

        dtstart is the start of the anchor's period (the anchor day shifted
        back by whole intervals for DAILY, its Monday for WEEKLY, the 1st for
        MONTHLY) so occurrences before the anchor inside that period, which
        is_valid_on accepts, are produced too. Weekly and bare monthly rules
        without day constraints match every day of an eligible period.

        Args:
            options: Decoded non-ONCE rule.
            anchor: Local anchor date for interval math.
            search_from: First day the caller will ask about.
        """
        if options.frequency == Frequency.DAILY:
            behind = max(dt_days_between(anchor, search_from), 0)
            periods = -(-behind // options.interval)
            dtstart = dt_add_days(anchor, -periods * options.interval)
            return rrule(
                DAILY,
                dtstart=datetime.combine(dtstart, time()),
                interval=options.interval,
            )

        if options.frequency == Frequency.WEEKLY:
            byweekday = [
                weekday(const.WEEKDAY_CODES.index(code))
                for code in options.by_day or const.WEEKDAY_CODES
            ]
            return rrule(
                WEEKLY,
                dtstart=datetime.combine(dt_start_of_week(anchor), time()),
                interval=options.interval,
                wkst=MO,
                byweekday=byweekday,
            )

        dtstart = datetime.combine(anchor.replace(day=1), time())
        if options.by_month_day:
            return rrule(
                MONTHLY,
                dtstart=dtstart,
                interval=options.interval,
                bymonthday=options.by_month_day,
            )
        if options.by_set_pos and options.by_day:
            nth_weekday = weekday(const.WEEKDAY_CODES.index(options.by_day[0]))(
                options.by_set_pos
            )
            return rrule(
                MONTHLY, dtstart=dtstart, interval=options.interval, byweekday=nth_weekday
            )
        return rrule(
            MONTHLY,
            dtstart=dtstart,
            interval=options.interval,
            bymonthday=tuple(range(1, 32)),
        )

    @staticmethod
    def describe(options: RecurrenceOptions) -> str:
        """Return a human readable summary of a rule.

        Examples:
            "Every day", "Every 2 weeks on Mon, Wed", "Monthly on the last Fri"
        """
        if options.frequency == Frequency.ONCE:
            return "Once"

        unit = {
            Frequency.DAILY: "day",
            Frequency.WEEKLY: "week",
            Frequency.MONTHLY: "month",
        }[options.frequency]
        text = (
            f"Every {unit}"
            if options.interval == 1
            else f"Every {options.interval} {unit}s"
        )

        if options.frequency == Frequency.WEEKLY and options.by_day:
            labels = [
                const.WEEKDAY_LABELS[code]
                for code in RecurrenceEngine._ordered_weekdays(options.by_day)
            ]
            text += f" on {', '.join(labels)}"
        elif options.frequency == Frequency.MONTHLY:
            if options.by_month_day:
                text += f" on day {options.by_month_day}"
            elif options.by_set_pos and options.by_day:
                ordinal = {-1: "last", 1: "1st", 2: "2nd", 3: "3rd", 4: "4th"}[
                    options.by_set_pos
                ]
                text += f" on the {ordinal} {const.WEEKDAY_LABELS[options.by_day[0]]}"

        return text

    # =========================================================================
    # Private helpers
    # =========================================================================

    @staticmethod
    def _ordered_weekdays(codes: Iterable[str]) -> tuple[str, ...]:
        """Filter to valid weekday codes, de-duplicated, in MO..SU order."""
        wanted = {str(code).upper() for code in codes}
        return tuple(code for code in const.WEEKDAY_CODES if code in wanted)

    @staticmethod
    def _parse_int(value: str | None) -> int | None:
        """Parse a signed integer, returning None if malformed."""
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None


# Module-level aliases matching the rule-codec vocabulary used by callers
encode = RecurrenceEngine.encode
decode = RecurrenceEngine.decode
is_valid_on = RecurrenceEngine.is_valid_on
next_due_date = RecurrenceEngine.next_due_date
