# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL

"""Calendar-day arithmetic pinned to a fixed business timezone.

Kimai records every entry in the business timezone, so every comparison
of calendar dates has to happen there too, whatever timezone the process
itself runs in. These helpers take anything date-like and answer in the
business zone using `arrow` (which resolves DST per date via dateutil).
"""

import re
from datetime import date, datetime, tzinfo
from typing import NamedTuple, Union

import arrow
from arrow.parser import ParserError, TzinfoParser

from errors import ConfigurationError, ValidationError

BUSINESS_TIMEZONE = 'America/New_York'
ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
ZONE_NAME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9_+\-]*(/[A-Za-z0-9_+\-]+)*$')

DateLike = Union[str, date, datetime, arrow.Arrow]
ZoneLike = Union[str, tzinfo]


class DateParts(NamedTuple):
    """Calendar parts of an instant as seen in some zone."""
    year: int
    month: int
    day: int

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)


def resolve_zone(zone: ZoneLike) -> tzinfo:
    """Turn an IANA name into a tzinfo, refusing anything unrecognized.

    Only region names (`America/New_York`, `UTC`) are accepted: the
    `local` keyword and bare UTC offsets carry no DST rules for the
    business calendar.

    Raises:
        ConfigurationError: for an empty, local, offset-only or unknown zone
    """
    if isinstance(zone, tzinfo):
        return zone
    # dateutil maps '' to the local zone, which is exactly what we must not do
    if not zone or not zone.strip():
        raise ConfigurationError('Timezone must not be empty')
    zone = zone.strip()
    if zone.casefold() == 'local':
        raise ConfigurationError('Timezone must be named; the process-local zone is not allowed')
    if not ZONE_NAME_PATTERN.match(zone):
        raise ConfigurationError(f'Timezone must be an IANA name such as {BUSINESS_TIMEZONE}, got {zone!r}')
    try:
        return TzinfoParser.parse(zone)
    except ParserError as exc:
        raise ConfigurationError(f'Unrecognized timezone: {zone!r}') from exc


def to_zone(value: DateLike, zone: ZoneLike) -> arrow.Arrow:
    """Interpret `value` as an instant and express it in `zone`.

    Strings of the form YYYY-MM-DD and `date` objects are calendar dates in
    `zone` (their midnight); naive datetimes are wall-clock times in `zone`;
    aware datetimes and `arrow` objects are converted.

    Raises:
        ValidationError: for a string that is neither an ISO date nor an
                         ISO 8601 timestamp
    """
    tz = resolve_zone(zone)
    if isinstance(value, arrow.Arrow):
        return value.to(tz)
    if isinstance(value, str):
        try:
            if ISO_DATE_PATTERN.match(value):
                value = date.fromisoformat(value)
            else:
                value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError('date', value, 'expected YYYY-MM-DD or an ISO 8601 timestamp') from exc
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return arrow.Arrow.fromdatetime(value, tzinfo=tz)
        return arrow.Arrow.fromdatetime(value).to(tz)
    if isinstance(value, date):
        return arrow.Arrow.fromdate(value, tzinfo=tz)
    raise TypeError(f'Cannot interpret {value!r} as a date')


def start_of_day_in_zone(value: DateLike, zone: ZoneLike) -> arrow.Arrow:
    """00:00:00 local time in `zone` on the calendar day `value` falls on there."""
    return to_zone(value, zone).floor('day')


def end_of_day_in_zone(value: DateLike, zone: ZoneLike) -> arrow.Arrow:
    """Last representable instant of the same calendar day in `zone`."""
    return to_zone(value, zone).ceil('day')


def date_parts_in_zone(value: DateLike, zone: ZoneLike) -> DateParts:
    local = to_zone(value, zone)
    return DateParts(local.year, local.month, local.day)


def calendar_date_in_zone(value: DateLike, zone: ZoneLike) -> date:
    return date_parts_in_zone(value, zone).to_date()
