# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Hours compliance: who worked what they were expected to in a pay period"""

import logging
import os
from dataclasses import dataclass, field
from os.path import join
from typing import Dict, Iterable, List, Optional

import arrow
from rich.console import Console, ConsoleOptions, RenderResult
from rich.table import Table

from errors import StorageError
from payperiod import PayPeriod
from timesheet import ProcessedEntry, ProcessingStats
from users import UserDirectory

COMPLIANCE_TOLERANCE_HOURS = 3.0
REPORT_FILENAME = 'hours-report.txt'
TABLE_HEADERS = ('User', 'Hours Worked', 'Expected', 'Difference', '% Deviation', 'Status')
NUMERIC_COLUMN_WIDTHS = (12, 8, 10, 11, 6)
MIN_USER_COLUMN_WIDTH = 20
NO_DATA_TABLE = 'No data to display'


@dataclass(frozen=True)
class UserComplianceRecord:
    """One user's hours against their target.

    `percent_deviation` is None when the target is zero hours.
    """
    user_key: str
    display_name: str
    hours_worked: float
    expected_hours: float
    difference: float
    percent_deviation: Optional[float]
    compliant: bool

    def format_difference(self) -> str:
        return f'{self.difference:+.2f}'

    def format_percent(self) -> str:
        if self.percent_deviation is None:
            return 'n/a'
        return f'{self.percent_deviation:+.1f}%'

    def format_status(self) -> str:
        return '✓' if self.compliant else '✗'


@dataclass(frozen=True)
class ComplianceSummary:
    total_users: int
    compliant_users: int
    non_compliant_users: int
    compliance_rate: float
    total_expected_hours: float
    total_worked_hours: float
    total_difference: float
    average_hours_per_user: float


def format_table(records: List[UserComplianceRecord]) -> str:
    """Render records as the fixed-width pipe table used in chat and files.

    Output depends only on `records`, so the same input always gives the
    same bytes.
    """
    if not records:
        return NO_DATA_TABLE

    widths = (max(MIN_USER_COLUMN_WIDTH, *(len(r.display_name) for r in records)),
              *NUMERIC_COLUMN_WIDTHS)
    lines = ['| ' + ' | '.join(h.ljust(w) for h, w in zip(TABLE_HEADERS, widths)) + ' |',
             '|' + '|'.join('-' * (w + 2) for w in widths) + '|']
    for record in records:
        cells = (record.display_name.ljust(widths[0]),
                 f'{record.hours_worked:.2f}'.rjust(widths[1]),
                 f'{record.expected_hours:.2f}'.rjust(widths[2]),
                 record.format_difference().rjust(widths[3]),
                 record.format_percent().rjust(widths[4]),
                 record.format_status().rjust(widths[5]))
        lines.append('| ' + ' | '.join(cells) + ' |')
    return '\n'.join(lines) + '\n'


@dataclass
class HoursReport:
    """The result of one compliance run over a pay period."""
    records: List[UserComplianceRecord]
    summary: ComplianceSummary
    period: Optional[PayPeriod] = None
    stats: Optional[ProcessingStats] = None
    entry_count: int = 0
    generated_at: arrow.Arrow = field(default_factory=arrow.utcnow)

    @property
    def table(self) -> str:
        return format_table(self.records)

    def non_compliant(self) -> List[UserComplianceRecord]:
        return [record for record in self.records if not record.compliant]

    @property
    def content(self) -> str:
        """Full text report: header, row accounting, table and summary."""
        lines = []
        if self.period is not None:
            lines.append(f'Hours Compliance Report - Pay Period #{self.period.number}')
            lines.append(f'Period: {self.period.start_date.format("MMM D")} - '
                         f'{self.period.end_date.format("MMM DD, YYYY")}')
        else:
            lines.append('Hours Compliance Report')
        lines.append(f'Generated: {self.generated_at.isoformat()}')
        lines.append('Source: Automated pull')
        lines.append(f'Entries: {self.entry_count}')
        if self.stats is not None:
            lines.append(f'Excluded (outside period): {self.stats.records_outside_period}')
            lines.append(f'Malformed rows: {self.stats.malformed_records}')
        lines.append('')
        lines.append(self.table.rstrip('\n'))
        lines.append('')
        summary = self.summary
        lines.append('Summary')
        lines.append(f'Users: {summary.total_users} ({summary.compliant_users} compliant, '
                     f'{summary.non_compliant_users} non-compliant)')
        lines.append(f'Compliance rate: {summary.compliance_rate:.1f}%')
        lines.append(f'Total hours: worked {summary.total_worked_hours:.2f} / '
                     f'expected {summary.total_expected_hours:.2f} '
                     f'({summary.total_difference:+.2f})')
        lines.append(f'Average hours per user: {summary.average_hours_per_user:.2f}')
        return '\n'.join(lines) + '\n'

    def save(self, directory: str) -> str:
        """Write the full report as `hours-report.txt` under `directory`.

        Raises:
            StorageError: if the directory or file cannot be written
        """
        path = join(directory, REPORT_FILENAME)
        try:
            os.makedirs(directory, exist_ok=True)
            with open(path, encoding='utf-8', mode='w') as report:
                report.write(self.content)
        except OSError as exc:
            raise StorageError(f'Could not write report {path}: {exc}') from exc
        return path

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        # pylint: disable=unused-argument
        if self.period is not None:
            yield (f"[b]Hours compliance:[/b] pay period #{self.period.number} "
                   f"({self.period.start} to {self.period.end})")
        my_table = Table(*TABLE_HEADERS)
        for record in self.records:
            style = 'green' if record.compliant else 'red'
            my_table.add_row(record.display_name,
                             f'{record.hours_worked:.2f}',
                             f'{record.expected_hours:.2f}',
                             record.format_difference(),
                             record.format_percent(),
                             record.format_status(),
                             style=style)
        yield my_table
        yield (f"{self.summary.compliant_users}/{self.summary.total_users} compliant "
               f"({self.summary.compliance_rate:.1f}%)")
        if self.stats is not None and (self.stats.malformed_records or self.stats.records_outside_period):
            yield (f"[yellow]{self.stats.records_outside_period} rows outside the period, "
                   f"{self.stats.malformed_records} malformed rows skipped[/yellow]")


class HoursReportGenerator:
    """Aggregate processed entries per user and classify compliance."""

    def __init__(self, directory: UserDirectory,
                 tolerance_hours: float = COMPLIANCE_TOLERANCE_HOURS) -> None:
        self.logger = logging.getLogger('HoursReportGenerator')
        self.directory = directory
        self.tolerance_hours = tolerance_hours

    def aggregate_hours_by_user(self, entries: Iterable[ProcessedEntry]) -> Dict[str, float]:
        """Hours per canonical user, in the order users first appear."""
        seconds: Dict[str, int] = {}
        for entry in entries:
            seconds[entry.canonical_user] = seconds.get(entry.canonical_user, 0) + entry.duration_seconds
        return {user: total / 3600.0 for user, total in seconds.items()}

    def build_record(self, user_key: str, hours_worked: float) -> UserComplianceRecord:
        user = self.directory.get(user_key) or self.directory.find_by_alias(user_key)
        expected = self.directory.expected_hours(user)
        difference = hours_worked - expected
        if expected:
            percent = difference / expected * 100
            # round away float noise so 83.0 vs 80 sits exactly on the band edge
            compliant = abs(round(difference, 6)) <= self.tolerance_hours
        else:
            percent = None
            compliant = hours_worked == 0
        return UserComplianceRecord(
            user_key=user_key,
            display_name=user.display_name if user is not None else user_key,
            hours_worked=hours_worked,
            expected_hours=expected,
            difference=difference,
            percent_deviation=percent,
            compliant=compliant,
        )

    def summarize(self, records: List[UserComplianceRecord]) -> ComplianceSummary:
        total = len(records)
        compliant = sum(1 for record in records if record.compliant)
        total_expected = sum(record.expected_hours for record in records)
        total_worked = sum(record.hours_worked for record in records)
        return ComplianceSummary(
            total_users=total,
            compliant_users=compliant,
            non_compliant_users=total - compliant,
            compliance_rate=round(compliant / total * 100, 1) if total else 0.0,
            total_expected_hours=total_expected,
            total_worked_hours=total_worked,
            total_difference=total_worked - total_expected,
            average_hours_per_user=total_worked / total if total else 0.0,
        )

    def generate_report(self, entries: List[ProcessedEntry],
                        period: Optional[PayPeriod] = None,
                        stats: Optional[ProcessingStats] = None,
                        generated_at: Optional[arrow.Arrow] = None) -> HoursReport:
        """Build the compliance report for already-filtered entries.

        Records are sorted by hours worked, highest first; ties keep the
        order in which users first appear in `entries`.
        """
        hours = self.aggregate_hours_by_user(entries)
        records = [self.build_record(user, worked) for user, worked in hours.items()]
        records.sort(key=lambda record: record.hours_worked, reverse=True)
        report = HoursReport(records=records,
                             summary=self.summarize(records),
                             period=period,
                             stats=stats,
                             entry_count=len(entries),
                             generated_at=generated_at or arrow.utcnow())
        self.logger.info(f'{report.summary.compliant_users}/{report.summary.total_users} users '
                         f'compliant ({report.summary.compliance_rate:.1f}%)')
        return report
