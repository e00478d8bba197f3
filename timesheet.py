# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Turn a raw Kimai CSV export into per-user entries for one pay period"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from errors import ValidationError
from payperiod import PayPeriod
from users import UserDirectory
from zonedates import (BUSINESS_TIMEZONE, ISO_DATE_PATTERN, ZoneLike,
                       calendar_date_in_zone, resolve_zone)

CSV_COLUMNS = ('Date', 'From', 'To', 'Duration', 'User',
               'Project', 'Activity', 'Description', 'Billable')
REQUIRED_COLUMNS = ('Date', 'Duration', 'User')
DURATION_PATTERN = re.compile(r'^(\d+):([0-5]\d)$')
REJECTED_LINE = '_rejected_line'
_REJECTED_MARKER = '\x00rejected'


def parse_entry_date(text: Optional[str]) -> date:
    """Validate a strict YYYY-MM-DD date field.

    Raises:
        ValidationError: if the field is empty, mis-shaped or not a real date
    """
    text = (text or '').strip()
    if not ISO_DATE_PATTERN.match(text):
        raise ValidationError('Date', text, 'expected YYYY-MM-DD')
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError('Date', text, str(exc)) from exc


def parse_duration(text: Optional[str]) -> int:
    """Convert an H:MM duration (hours may exceed 23) into seconds.

    Raises:
        ValidationError: if the field is not H:MM
    """
    match = DURATION_PATTERN.match((text or '').strip())
    if match is None:
        raise ValidationError('Duration', text, 'expected H:MM')
    hours, minutes = match.groups()
    return int(hours) * 3600 + int(minutes) * 60


def parse_billable(text: Any) -> bool:
    return str(text).strip().lower() in ('1', 'true', 'yes', 'y')


@dataclass(frozen=True)
class TimesheetEntry:
    """One unvalidated row of the Kimai export."""
    date: str
    from_time: str
    to_time: str
    duration_text: str
    user: str
    project: str
    activity: str
    description: str
    billable: bool

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'TimesheetEntry':
        def text(column: str) -> str:
            value = row.get(column)
            return '' if value is None else str(value)

        return cls(date=text('Date'),
                   from_time=text('From'),
                   to_time=text('To'),
                   duration_text=text('Duration'),
                   user=text('User'),
                   project=text('Project'),
                   activity=text('Activity'),
                   description=text('Description'),
                   billable=parse_billable(text('Billable')))


@dataclass(frozen=True)
class ProcessedEntry:
    canonical_user: str
    duration_seconds: int
    date: str
    project: str
    activity: str
    description: str
    billable: bool
    original_user: str

    @property
    def hours(self) -> float:
        return self.duration_seconds / 3600.0


@dataclass(frozen=True)
class MalformedRow:
    """A row that could not be used, and why."""
    row_number: int
    entry: TimesheetEntry
    reason: str


@dataclass
class ProcessingStats:
    """Row accounting for one processing run.

    `filtered_records + records_outside_period + malformed_records`
    always equals `total_records`.
    """
    total_records: int = 0
    filtered_records: int = 0
    records_outside_period: int = 0
    malformed_records: int = 0
    unique_users: int = 0
    total_hours: float = 0.0
    period_number: Optional[int] = None
    date_range: Tuple[str, str] = ('', '')

    @property
    def reconciles(self) -> bool:
        return (self.filtered_records + self.records_outside_period
                + self.malformed_records) == self.total_records


@dataclass
class ProcessingResult:
    period: PayPeriod
    processed_entries: List[ProcessedEntry] = field(default_factory=list)
    malformed: List[MalformedRow] = field(default_factory=list)
    stats: ProcessingStats = field(default_factory=ProcessingStats)


def read_timesheet_csv(csv_data: str) -> List[Dict[str, str]]:
    """Parse CSV text into row dicts keyed by the (case-sensitive) header.

    A line with more fields than the header stays in place as a
    `{REJECTED_LINE: reason}` dict, so callers can count it as malformed.

    Raises:
        ValidationError: if there is a header but it lacks a required column
    """
    if not csv_data or not csv_data.strip():
        return []
    try:
        header = pd.read_csv(io.StringIO(csv_data), dtype=str, nrows=0)
    except pd.errors.EmptyDataError:
        return []
    columns = [str(column).strip() for column in header.columns]
    missing = [column for column in REQUIRED_COLUMNS if column not in columns]
    if missing:
        raise ValidationError('header', columns, f'missing column(s) {", ".join(missing)}')

    rejected: List[str] = []

    def reject(fields: List[str]) -> List[str]:
        rejected.append(f'expected {len(columns)} fields, saw {len(fields)}: {",".join(fields)}')
        return [_REJECTED_MARKER] * len(columns)

    frame = pd.read_csv(io.StringIO(csv_data), dtype=str, keep_default_na=False,
                        skip_blank_lines=True, engine='python', on_bad_lines=reject)
    # short rows come back as NaN even with keep_default_na off
    frame = frame.fillna('')
    frame.columns = columns

    reasons = iter(rejected)
    rows = []
    for row in frame.to_dict('records'):
        if row[columns[0]] == _REJECTED_MARKER:
            row = {REJECTED_LINE: next(reasons)}
        rows.append(row)
    return rows


class TimesheetProcessor:
    """Filter raw rows to a pay period and map them onto roster users."""

    def __init__(self, directory: UserDirectory, timezone: ZoneLike = BUSINESS_TIMEZONE) -> None:
        self.logger = logging.getLogger('TimesheetProcessor')
        self.directory = directory
        self.timezone = resolve_zone(timezone)

    def map_user(self, raw_user: str) -> str:
        """Canonical key for a raw user label; unknown labels pass through."""
        user = self.directory.find_by_alias(raw_user)
        if user is None:
            return raw_user
        return user.key

    def process_csv(self, csv_data: str, period: PayPeriod) -> ProcessingResult:
        return self.process_records(read_timesheet_csv(csv_data), period)

    def process_records(self,
                        raw_records: Iterable[Union[TimesheetEntry, Dict[str, Any]]],
                        period: PayPeriod) -> ProcessingResult:
        """Admit the rows dated inside `period` and convert them.

        Rows with a bad date, a bad duration or too many fields are skipped
        and counted as malformed; well-formed rows dated outside the period are counted
        separately. Neither aborts the run.
        """
        first_day = calendar_date_in_zone(period.start_date, self.timezone)
        last_day = calendar_date_in_zone(period.end_date, self.timezone)
        result = ProcessingResult(period=period)
        stats = result.stats
        stats.period_number = period.number
        stats.date_range = (first_day.isoformat(), last_day.isoformat())

        for row_number, raw in enumerate(raw_records, start=1):
            entry = raw if isinstance(raw, TimesheetEntry) else TimesheetEntry.from_row(raw)
            stats.total_records += 1
            try:
                if isinstance(raw, dict) and REJECTED_LINE in raw:
                    raise ValidationError('line', row_number, raw[REJECTED_LINE])
                entry_day = calendar_date_in_zone(parse_entry_date(entry.date), self.timezone)
                if not first_day <= entry_day <= last_day:
                    stats.records_outside_period += 1
                    continue
                duration = parse_duration(entry.duration_text)
            except ValidationError as exc:
                self.logger.warning(f'Skipping row {row_number} ({entry.user}): {exc}')
                result.malformed.append(MalformedRow(row_number, entry, str(exc)))
                stats.malformed_records += 1
                continue

            result.processed_entries.append(ProcessedEntry(
                canonical_user=self.map_user(entry.user),
                duration_seconds=duration,
                date=entry.date.strip(),
                project=entry.project,
                activity=entry.activity,
                description=entry.description,
                billable=entry.billable,
                original_user=entry.user,
            ))

        stats.filtered_records = len(result.processed_entries)
        stats.unique_users = len({e.canonical_user for e in result.processed_entries})
        stats.total_hours = sum(e.duration_seconds for e in result.processed_entries) / 3600.0
        self.logger.debug(f'Period {period.number}: kept {stats.filtered_records} of '
                          f'{stats.total_records} rows ({stats.records_outside_period} outside, '
                          f'{stats.malformed_records} malformed)')
        return result
