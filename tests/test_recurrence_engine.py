"""Unit tests for recurrence_engine.py RecurrenceEngine.

Covers:
- Encoding: deterministic key order, INTERVAL omission, BYMONTHDAY precedence
- Decoding: legacy literals, key order, malformed input (decode is total)
- is_valid_on for daily, weekly, monthly (month day, Nth and last weekday), once
- next_due_date search and its bounded failure
- to_rrule producing the same days as is_valid_on
- describe() summaries
"""

from datetime import date, datetime, timedelta
import logging

import pytest

from starhabit.const import Frequency
from starhabit.engines.recurrence_engine import RecurrenceEngine, RecurrenceOptions

# =============================================================================
# Encoding
# =============================================================================


class TestEncode:
    """Tests for RecurrenceEngine.encode."""

    def test_daily_omits_interval_of_one(self) -> None:
        """Interval 1 is the default and is not written."""
        assert RecurrenceEngine.encode(RecurrenceOptions()) == "FREQ=DAILY"

    def test_weekly_days_emitted_in_calendar_order(self) -> None:
        """BYDAY codes are sorted MO..SU regardless of input order."""
        options = RecurrenceOptions(
            frequency=Frequency.WEEKLY, interval=2, by_day=("FR", "MO", "WE")
        )
        assert RecurrenceEngine.encode(options) == "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE,FR"

    def test_monthly_month_day_wins_over_set_pos(self) -> None:
        """BYMONTHDAY and an ordinal weekday are never both emitted."""
        options = RecurrenceOptions(
            frequency=Frequency.MONTHLY,
            by_month_day=15,
            by_day=("SU",),
            by_set_pos=2,
        )
        assert RecurrenceEngine.encode(options) == "FREQ=MONTHLY;BYMONTHDAY=15"

    def test_monthly_last_weekday(self) -> None:
        """Set position -1 encodes as a signed ordinal prefix."""
        options = RecurrenceOptions(
            frequency=Frequency.MONTHLY, by_day=("FR",), by_set_pos=-1
        )
        assert RecurrenceEngine.encode(options) == "FREQ=MONTHLY;BYDAY=-1FR"

    def test_once_is_literal(self) -> None:
        """ONCE encodes as the legacy literal."""
        assert RecurrenceEngine.encode(RecurrenceOptions(frequency=Frequency.ONCE)) == "Once"


# =============================================================================
# Decoding
# =============================================================================


class TestDecode:
    """Tests for RecurrenceEngine.decode."""

    @pytest.mark.parametrize(
        "options",
        [
            RecurrenceOptions(),
            RecurrenceOptions(frequency=Frequency.DAILY, interval=3),
            RecurrenceOptions(frequency=Frequency.WEEKLY, by_day=("MO", "WE", "FR")),
            RecurrenceOptions(frequency=Frequency.MONTHLY, interval=2, by_month_day=31),
            RecurrenceOptions(frequency=Frequency.MONTHLY, by_day=("SU",), by_set_pos=2),
            RecurrenceOptions(frequency=Frequency.ONCE),
        ],
    )
    def test_round_trip(self, options: RecurrenceOptions) -> None:
        """decode(encode(options)) returns the same options."""
        assert RecurrenceEngine.decode(RecurrenceEngine.encode(options)) == options

    @pytest.mark.parametrize(
        ("literal", "frequency"),
        [
            ("Daily", Frequency.DAILY),
            ("weekly", Frequency.WEEKLY),
            ("MONTHLY", Frequency.MONTHLY),
            ("Once", Frequency.ONCE),
        ],
    )
    def test_legacy_literals(self, literal: str, frequency: Frequency) -> None:
        """Legacy shorthands normalise to interval 1 with no constraints."""
        assert RecurrenceEngine.decode(literal) == RecurrenceOptions(frequency=frequency)

    def test_key_order_does_not_matter(self) -> None:
        """BYDAY before FREQ still decodes as weekly days."""
        options = RecurrenceEngine.decode("BYDAY=TU,TH;FREQ=WEEKLY")
        assert options.frequency == Frequency.WEEKLY
        assert options.by_day == ("TU", "TH")

    @pytest.mark.parametrize("rule", [None, "", "garbage", "FREQ=YEARLY", ";;=;"])
    def test_unusable_rules_default_to_daily(self, rule: str | None) -> None:
        """Anything unrecognised decodes to DAILY every day."""
        assert RecurrenceEngine.decode(rule) == RecurrenceOptions()

    def test_malformed_parts_are_ignored(self) -> None:
        """Bad interval and unknown weekday codes are dropped, the rest kept."""
        options = RecurrenceEngine.decode("FREQ=WEEKLY;INTERVAL=abc;BYDAY=XX,MO")
        assert options == RecurrenceOptions(frequency=Frequency.WEEKLY, by_day=("MO",))

    def test_non_positive_interval_becomes_one(self) -> None:
        """INTERVAL=0 is not a valid repeat and falls back to 1."""
        assert RecurrenceEngine.decode("FREQ=DAILY;INTERVAL=0").interval == 1

    def test_unsupported_set_position_is_ignored(self) -> None:
        """Only -1 and 1..4 are accepted as ordinal weekdays."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;BYDAY=5SU")
        assert options.by_set_pos is None
        assert options.by_day == ()


# =============================================================================
# Date validity
# =============================================================================


class TestIsValidOn:
    """Tests for RecurrenceEngine.is_valid_on."""

    def test_weekly_scenario_mon_wed_fri(self) -> None:
        """MO,WE,FR anchored on Monday 2024-01-01."""
        options = RecurrenceEngine.decode("FREQ=WEEKLY;BYDAY=MO,WE,FR")
        anchor = date(2024, 1, 1)

        assert RecurrenceEngine.is_valid_on(date(2024, 1, 3), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 1, 4), options, anchor)
        assert RecurrenceEngine.is_valid_on(date(2024, 1, 8), options, anchor)

    def test_weekly_interval_counts_monday_start_weeks(self) -> None:
        """Every other week, anchored mid-week, matches the anchor's week parity."""
        options = RecurrenceEngine.decode("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO")
        anchor = date(2024, 1, 3)  # Wednesday of week starting 2024-01-01

        assert RecurrenceEngine.is_valid_on(date(2024, 1, 1), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 1, 8), options, anchor)
        assert RecurrenceEngine.is_valid_on(date(2024, 1, 15), options, anchor)

    def test_weekly_before_anchor_week_is_invalid(self) -> None:
        """Weeks before the anchor week never match."""
        options = RecurrenceEngine.decode("FREQ=WEEKLY;BYDAY=WE")
        assert not RecurrenceEngine.is_valid_on(
            date(2023, 12, 27), options, date(2024, 1, 1)
        )

    def test_weekly_without_days_matches_every_day(self) -> None:
        """A weekly rule without BYDAY accepts any day of a matching week."""
        options = RecurrenceEngine.decode("Weekly")
        assert RecurrenceEngine.is_valid_on(date(2024, 1, 6), options, date(2024, 1, 1))

    def test_daily_interval(self) -> None:
        """Every third day from the anchor."""
        options = RecurrenceEngine.decode("FREQ=DAILY;INTERVAL=3")
        anchor = date(2024, 1, 1)

        assert RecurrenceEngine.is_valid_on(date(2024, 1, 4), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 1, 5), options, anchor)

    def test_monthly_by_month_day(self) -> None:
        """BYMONTHDAY matches that calendar day only."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;BYMONTHDAY=15")
        anchor = date(2024, 1, 10)

        assert RecurrenceEngine.is_valid_on(date(2024, 2, 15), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 2, 14), options, anchor)

    def test_monthly_second_sunday(self) -> None:
        """2SU in January 2024 is the 14th."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;BYDAY=2SU")
        anchor = date(2024, 1, 1)

        assert RecurrenceEngine.is_valid_on(date(2024, 1, 14), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 1, 7), options, anchor)

    def test_monthly_last_friday(self) -> None:
        """-1FR matches the last Friday of each month."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;BYDAY=-1FR")
        anchor = date(2024, 1, 1)

        assert RecurrenceEngine.is_valid_on(date(2024, 1, 26), options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 1, 19), options, anchor)
        assert RecurrenceEngine.is_valid_on(date(2024, 2, 23), options, anchor)

    def test_monthly_interval_skips_months(self) -> None:
        """Every other month skips February when anchored in January."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;INTERVAL=2;BYDAY=-1FR")
        anchor = date(2024, 1, 1)

        assert not RecurrenceEngine.is_valid_on(date(2024, 2, 23), options, anchor)
        assert RecurrenceEngine.is_valid_on(date(2024, 3, 29), options, anchor)

    def test_monthly_without_constraint_matches_every_day(self) -> None:
        """A bare monthly rule accepts any day of a matching month."""
        options = RecurrenceEngine.decode("Monthly")
        assert RecurrenceEngine.is_valid_on(date(2024, 3, 9), options, date(2024, 1, 20))

    def test_once_only_on_anchor(self) -> None:
        """ONCE is valid on the anchor date alone."""
        options = RecurrenceOptions(frequency=Frequency.ONCE)
        anchor = date(2024, 5, 5)

        assert RecurrenceEngine.is_valid_on(anchor, options, anchor)
        assert not RecurrenceEngine.is_valid_on(date(2024, 5, 6), options, anchor)

    def test_deterministic(self) -> None:
        """Same inputs, same answer."""
        options = RecurrenceEngine.decode("FREQ=MONTHLY;BYDAY=3WE")
        results = {
            RecurrenceEngine.is_valid_on(date(2024, 1, 17), options, date(2024, 1, 1))
            for _ in range(5)
        }
        assert results == {True}


# =============================================================================
# Next due date
# =============================================================================


class TestNextDueDate:
    """Tests for RecurrenceEngine.next_due_date."""

    def test_after_last_completion(self) -> None:
        """Search starts the day after the last completion."""
        result = RecurrenceEngine.next_due_date(
            "FREQ=WEEKLY;BYDAY=MO,WE,FR",
            date(2024, 1, 3),
            anchor=date(2024, 1, 1),
        )
        assert result == "2024-01-05"

    def test_never_completed_starts_today(self) -> None:
        """Without a completion the search starts today (Saturday -> Monday)."""
        result = RecurrenceEngine.next_due_date(
            "FREQ=WEEKLY;BYDAY=MO,WE,FR", today=date(2024, 1, 6)
        )
        assert result == "2024-01-08"

    def test_accepts_iso_timestamp(self) -> None:
        """A stored completed_at timestamp is bucketed to its local day."""
        result = RecurrenceEngine.next_due_date("Daily", "2024-01-31T18:00:00-05:00")
        assert result == "2024-02-01"

    def test_once_has_no_next_date(self) -> None:
        """Once rules never recur."""
        assert RecurrenceEngine.next_due_date("Once", date(2024, 1, 1)) == ""

    def test_search_is_bounded(self, caplog: pytest.LogCaptureFixture) -> None:
        """A rule with no occurrence in two years returns "" and logs an error."""
        # Only Februaries are eligible, and February has no 31st
        with caplog.at_level(logging.ERROR):
            result = RecurrenceEngine.next_due_date(
                "FREQ=MONTHLY;INTERVAL=12;BYMONTHDAY=31",
                anchor=date(2024, 2, 1),
                today=date(2024, 2, 1),
            )

        assert result == ""
        assert "No occurrence within" in caplog.text


# =============================================================================
# Describe
# =============================================================================


class TestDescribe:
    """Tests for human readable rule summaries."""

    @pytest.mark.parametrize(
        ("rule", "expected"),
        [
            ("Daily", "Every day"),
            ("FREQ=WEEKLY;INTERVAL=2;BYDAY=WE,MO", "Every 2 weeks on Mon, Wed"),
            ("FREQ=MONTHLY;BYDAY=-1FR", "Every month on the last Fri"),
            ("FREQ=MONTHLY;BYMONTHDAY=1", "Every month on day 1"),
            ("Once", "Once"),
        ],
    )
    def test_describe(self, rule: str, expected: str) -> None:
        """Summaries read naturally."""
        assert RecurrenceEngine.describe(RecurrenceEngine.decode(rule)) == expected


# =============================================================================
# rrule equivalence
# =============================================================================


class TestToRrule:
    """The dateutil rrule produces exactly the days is_valid_on accepts."""

    @pytest.mark.parametrize(
        "rule",
        [
            "FREQ=DAILY;INTERVAL=3",
            "FREQ=WEEKLY;INTERVAL=2;BYDAY=TU,SA",
            "Weekly",
            "FREQ=MONTHLY;BYMONTHDAY=31",
            "FREQ=MONTHLY;INTERVAL=2;BYDAY=2SU",
            "FREQ=MONTHLY;BYDAY=-1FR",
            "Monthly",
        ],
    )
    def test_matches_is_valid_on(self, rule: str) -> None:
        """Occurrences over half a year agree day by day, anchor mid-period."""
        options = RecurrenceEngine.decode(rule)
        anchor = date(2024, 1, 17)
        search_from = date(2024, 1, 1)

        produced = {
            occurrence.date()
            for occurrence in RecurrenceEngine.to_rrule(
                options, anchor, search_from
            ).between(datetime(2024, 1, 1), datetime(2024, 6, 30), inc=True)
        }
        expected = {
            day
            for day in (date(2024, 1, 1) + timedelta(days=n) for n in range(182))
            if RecurrenceEngine.is_valid_on(day, options, anchor)
        }

        assert produced == expected

    def test_next_due_before_anchor(self) -> None:
        """Daily intervals count backwards from the anchor too."""
        result = RecurrenceEngine.next_due_date(
            "FREQ=DAILY;INTERVAL=3", anchor=date(2024, 1, 10), today=date(2024, 1, 2)
        )
        assert result == "2024-01-04"
