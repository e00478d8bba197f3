# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Timesheet reminder and hours compliance bot"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

import requests
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from errors import TimesheetBotError
from hours_report import HoursReport, HoursReportGenerator
from kimai import KimaiExporter
from payperiod import PayPeriod, PayPeriodCalculator, get_ordinal
from reminders import ConsoleSink, ReminderService, WebhookSink
from settings import DEFAULT_SETTINGS_FILE, Settings
from snapshots import SnapshotStore
from timesheet import TimesheetProcessor
from users import UserDirectory

FORMAT = "%(message)s"


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level="DEBUG" if verbose else "INFO",
        format=FORMAT,
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True,
                              tracebacks_suppress=[requests])]
    )
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class TimesheetBot:
    """Everything a command needs, built once from settings."""

    def __init__(self, settings: Settings) -> None:
        self.logger = logging.getLogger('TimesheetBot')
        self.settings = settings
        self.calculator = PayPeriodCalculator(settings.anchor, settings.timezone)
        self.store = SnapshotStore(settings.storage_path)
        self._directory: Optional[UserDirectory] = None

    @property
    def directory(self) -> UserDirectory:
        if self._directory is None:
            self._directory = UserDirectory.from_json(
                self.settings.users_path,
                default_expected_hours=self.settings.default_expected_hours)
        return self._directory

    def period(self, number: Optional[int] = None) -> PayPeriod:
        if number is None:
            return self.calculator.get_current_pay_period()
        return self.calculator.get_period(number)

    def build_report(self, period: PayPeriod, csv_data: str) -> HoursReport:
        processed = TimesheetProcessor(self.directory, self.calculator.timezone).process_csv(csv_data, period)
        generator = HoursReportGenerator(self.directory, self.settings.tolerance_hours)
        return generator.generate_report(processed.processed_entries, period=period, stats=processed.stats)

    def pull(self, period: PayPeriod) -> HoursReport:
        """Export the period from Kimai, store it, and write its report."""
        csv_data = KimaiExporter(self.settings.kimai).export_csv(period)
        result = self.store.save(period.period_id, csv_data, {
            'periodNumber': period.number,
            'startDate': period.start.isoformat(),
            'endDate': period.end.isoformat(),
        })
        if result.created:
            print(f'Saved version {result.version} of pay period {period.number}')
        else:
            print(f'No changes since version {result.version} of pay period {period.number}')
        if result.changes_path:
            print(f'Changes written to {result.changes_path}')
        report = self.build_report(period, csv_data)
        path = report.save(self.store.period_path(period.period_id))
        self.logger.info(f'Report written to {path}')
        return report

    def stored_report(self, period: PayPeriod, version: Optional[int] = None) -> Optional[HoursReport]:
        """Rebuild a report from a stored snapshot; None when nothing is stored."""
        snapshot = (self.store.get_latest(period.period_id) if version is None
                    else self.store.get_version(period.period_id, version))
        if snapshot is None:
            return None
        return self.build_report(period, self.store.get_content(period.period_id, snapshot.version))

    def reminder_service(self, dry_run: bool) -> ReminderService:
        if dry_run:
            sink = ConsoleSink()
        else:
            sink = WebhookSink(self.settings.channels, direct_webhook=self.settings.direct_webhook)
        return ReminderService(self.calculator, sink)


def cmd_status(bot: TimesheetBot, args: argparse.Namespace) -> int:
    current, upcoming = bot.calculator.get_current_period_info(args.date)
    print(current)
    print(f'Next: {get_ordinal(upcoming.number)} pay period, {upcoming.start} to {upcoming.end}')
    print(f'Last day of period: {bot.calculator.is_last_day_of_period(args.date)}')
    print(f'Days until period end: {bot.calculator.get_days_until_period_end(args.date)}')
    return 0


def cmd_pull(bot: TimesheetBot, args: argparse.Namespace) -> int:
    print(bot.pull(bot.period(args.period)))
    return 0


def cmd_report(bot: TimesheetBot, args: argparse.Namespace) -> int:
    period = bot.period(args.period)
    report = bot.stored_report(period, args.version)
    if report is None:
        print(f'[red]No stored data for pay period {period.number}; run "pull" first[/red]')
        return 1
    if args.text:
        Console().print(report.content, markup=False, highlight=False, soft_wrap=True)
    else:
        print(report)
    return 0


def latest_report(bot: TimesheetBot, number: Optional[int]) -> Tuple[PayPeriod, Optional[HoursReport]]:
    """Stored report for `number`, or for the last period with data when unset."""
    period = bot.period(number)
    report = bot.stored_report(period)
    if report is None and number is None:
        # the period in progress may not be pulled yet; fall back to the last one
        period = bot.period(period.number - 1)
        report = bot.stored_report(period)
    return period, report


def cmd_remind(bot: TimesheetBot, args: argparse.Namespace) -> int:
    if args.followup:
        return send_followups(bot, args)
    channels = args.channel or list(bot.settings.channels)
    if not channels:
        print('[red]No channels given and none configured in the settings file[/red]')
        return 1
    service = bot.reminder_service(args.dry_run)
    if args.advance:
        service.send_advance_notice(channels, args.date)
    else:
        sent = service.send_period_reminder(channels, args.date, force=args.force)
        if not sent:
            print('Not the last day of the pay period; nothing sent (use --force to override)')
    return 0


def send_followups(bot: TimesheetBot, args: argparse.Namespace) -> int:
    period, report = latest_report(bot, args.period)
    if report is None:
        print(f'[red]No compliance data for pay period {period.number}[/red]')
        return 1
    sent = bot.reminder_service(args.dry_run).send_followups(report, bot.directory)
    print(f'Sent {len(sent)} follow-up(s) for pay period {period.number}')
    return 0


def cmd_compliance(bot: TimesheetBot, args: argparse.Namespace) -> int:
    period, report = latest_report(bot, args.period)
    if report is None:
        print(f'[red]No compliance data for pay period {period.number}[/red]')
        return 1
    bot.reminder_service(args.dry_run).send_compliance_report(args.destination, report)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--config', default=DEFAULT_SETTINGS_FILE, help='settings file (default: %(default)s)')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    commands = parser.add_subparsers(dest='command', required=True)

    status = commands.add_parser('status', help='show the current pay period')
    status.add_argument('--date', help='reference date, YYYY-MM-DD (default: today)')
    status.set_defaults(func=cmd_status)

    pull = commands.add_parser('pull', help='export from Kimai, store and report')
    pull.add_argument('--period', type=int, help='pay period number (default: current)')
    pull.set_defaults(func=cmd_pull)

    report = commands.add_parser('report', help='rebuild a report from stored data')
    report.add_argument('--period', type=int, help='pay period number (default: current)')
    report.add_argument('--version', type=int, help='snapshot version (default: latest)')
    report.add_argument('--text', action='store_true', help='print the plain text report')
    report.set_defaults(func=cmd_report)

    remind = commands.add_parser('remind', help='send the end-of-period reminder')
    remind.add_argument('--channel', action='append', help='channel name (repeatable; default: all)')
    remind.add_argument('--date', help='reference date, YYYY-MM-DD (default: today)')
    remind.add_argument('--advance', action='store_true', help='send the advance notice instead')
    remind.add_argument('--force', action='store_true', help='send even if today is not the last day')
    remind.add_argument('--followup', action='store_true',
                        help='message each user short on hours in a stored period instead')
    remind.add_argument('--period', type=int, help='pay period for --followup (default: latest with data)')
    remind.add_argument('--dry-run', action='store_true', help='print instead of sending')
    remind.set_defaults(func=cmd_remind)

    compliance = commands.add_parser('compliance', help='send a compliance report')
    compliance.add_argument('destination', help='channel name or webhook URL')
    compliance.add_argument('--period', type=int, help='pay period number (default: latest with data)')
    compliance.add_argument('--dry-run', action='store_true', help='print instead of sending')
    compliance.set_defaults(func=cmd_compliance)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        bot = TimesheetBot(Settings(args.config))
        return args.func(bot, args)
    except TimesheetBotError as exc:
        logging.getLogger('TimesheetBot').debug('Command failed', exc_info=True)
        print(f'[red]{type(exc).__name__}: {escape(str(exc))}[/red]')
        return 1


if __name__ == '__main__':
    sys.exit(main())
