# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL

"""Bi-weekly pay periods counted from a known anchor period"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional

import arrow
from rich.console import Console, ConsoleOptions, RenderResult
from rich.table import Table

from errors import ConfigurationError
from zonedates import (BUSINESS_TIMEZONE, DateLike, ZoneLike,
                       calendar_date_in_zone, end_of_day_in_zone,
                       resolve_zone, start_of_day_in_zone)

DEFAULT_PERIOD_LENGTH_DAYS = 14
DEFAULT_PAYMENT_DELAY_DAYS = 7


@dataclass(frozen=True)
class AnchorConfig:
    """A known-good (period number, end date) pair plus the period shape.

    `base_period_end_date` is a calendar date in the business timezone,
    never a wall-clock instant.
    """
    base_period_number: int
    base_period_end_date: date
    period_length_days: int = DEFAULT_PERIOD_LENGTH_DAYS
    payment_delay_days: int = DEFAULT_PAYMENT_DELAY_DAYS

    def __post_init__(self) -> None:
        if isinstance(self.base_period_number, bool) or not isinstance(self.base_period_number, int):
            raise ConfigurationError(
                f'base_period_number must be an integer, got {self.base_period_number!r}')
        # datetime is a date subclass but carries a wall-clock time we would drift on
        if not isinstance(self.base_period_end_date, date) or isinstance(self.base_period_end_date, datetime):
            raise ConfigurationError(
                f'base_period_end_date must be a calendar date, got {self.base_period_end_date!r}')
        if not isinstance(self.period_length_days, int) or self.period_length_days < 1:
            raise ConfigurationError(
                f'period_length_days must be a positive integer, got {self.period_length_days!r}')
        if not isinstance(self.payment_delay_days, int) or self.payment_delay_days < 0:
            raise ConfigurationError(
                f'payment_delay_days must be a non-negative integer, got {self.payment_delay_days!r}')


@dataclass(frozen=True)
class PayPeriod:
    """One numbered pay period.

    `start_date` is local midnight of the first day, `end_date` the last
    instant of the last day (so `t <= end_date` covers the whole day) and
    `payment_date` local midnight of the payday.
    """
    number: int
    start_date: arrow.Arrow
    end_date: arrow.Arrow
    payment_date: arrow.Arrow

    @property
    def start(self) -> date:
        return self.start_date.date()

    @property
    def end(self) -> date:
        return self.end_date.date()

    @property
    def period_id(self) -> str:
        """Key the snapshot store files this period under."""
        return str(self.number)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def __str__(self) -> str:
        return f'{self.start}--{self.end}'

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        # pylint: disable=unused-argument
        yield f"[b]PayPeriod:[/b] #{self.number} ({get_ordinal(self.number)})"
        my_table = Table("Attribute", "Value")
        my_table.add_row("start_date", str(self.start_date))
        my_table.add_row("end_date", str(self.end_date))
        my_table.add_row("payment_date", str(self.payment_date))
        yield my_table


class PeriodInfo(NamedTuple):
    current_period: PayPeriod
    next_period: PayPeriod


def get_ordinal(number: int) -> str:
    """English ordinal: 1st, 2nd, 3rd, 4th, 11th, 12th, 13th, 21st..."""
    if 11 <= number % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(number % 10, 'th')
    return f'{number}{suffix}'


class PayPeriodCalculator:
    """Map any date onto the pay period containing it.

    Stateless apart from the anchor and zone given at construction, so the
    same reference date always yields the same period.
    """

    def __init__(self, anchor: AnchorConfig, timezone: ZoneLike = BUSINESS_TIMEZONE) -> None:
        self.anchor = anchor
        self.timezone = resolve_zone(timezone)

    def _today(self) -> arrow.Arrow:
        return arrow.now(self.timezone)

    def _periods_passed(self, day: date) -> int:
        """Whole periods between the anchor period and the one holding `day`.

        Counted on calendar dates in the business zone, so a 23 or 25 hour
        DST day cannot knock the count off by one. Period `n` covers
        days `n*L-(L-1) .. n*L` relative to the anchor end, so the count
        is `ceil(days / L)` in both directions.
        """
        days_since_base = (day - self.anchor.base_period_end_date).days
        return -((-days_since_base) // self.anchor.period_length_days)

    def _build_period(self, periods_passed: int) -> PayPeriod:
        length = self.anchor.period_length_days
        end = self.anchor.base_period_end_date + timedelta(days=periods_passed * length)
        start = end - timedelta(days=length - 1)
        payment = end + timedelta(days=self.anchor.payment_delay_days)
        return PayPeriod(
            number=self.anchor.base_period_number + periods_passed,
            start_date=start_of_day_in_zone(start, self.timezone),
            end_date=end_of_day_in_zone(end, self.timezone),
            payment_date=start_of_day_in_zone(payment, self.timezone),
        )

    def get_current_period_info(self, reference_date: Optional[DateLike] = None) -> PeriodInfo:
        """Compute the period containing `reference_date` and the one after it.

        Args:
            reference_date: anything `zonedates.to_zone` accepts
                            (default None, for now in the business zone)

        Returns:
            PeriodInfo: (current_period, next_period)
        """
        if reference_date is None:
            reference_date = self._today()
        day = calendar_date_in_zone(reference_date, self.timezone)
        periods_passed = self._periods_passed(day)
        return PeriodInfo(
            current_period=self._build_period(periods_passed),
            next_period=self._build_period(periods_passed + 1),
        )

    def get_current_pay_period(self, reference_date: Optional[DateLike] = None) -> PayPeriod:
        return self.get_current_period_info(reference_date).current_period

    def get_period(self, number: int) -> PayPeriod:
        """Look a period up by its number instead of by a date inside it."""
        return self._build_period(number - self.anchor.base_period_number)

    def is_last_day_of_period(self, reference_date: Optional[DateLike] = None) -> bool:
        if reference_date is None:
            reference_date = self._today()
        period = self.get_current_pay_period(reference_date)
        return calendar_date_in_zone(reference_date, self.timezone) == period.end

    def get_days_until_period_end(self, reference_date: Optional[DateLike] = None) -> int:
        if reference_date is None:
            reference_date = self._today()
        period = self.get_current_pay_period(reference_date)
        today = calendar_date_in_zone(reference_date, self.timezone)
        return max(0, (period.end - today).days)
