# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Pay period reminders and compliance messages for the team chat"""

import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import requests
from rich.console import Console

from errors import ConfigurationError, ExternalServiceError
from hours_report import HoursReport, UserComplianceRecord
from payperiod import PayPeriod, PayPeriodCalculator, get_ordinal
from users import UserDirectory
from zonedates import DateLike

WEBHOOK_TIMEOUT = 10.0
LONG_DATE_FORMAT = 'MMMM Do'
SHORT_DATE_FORMAT = 'M/D'


def _period_length_text(period: PayPeriod) -> str:
    days = (period.end - period.start).days + 1
    if days % 7 == 0:
        weeks = days // 7
        return f'{weeks} week' if weeks == 1 else f'{weeks} weeks'
    return f'{days} days'


def format_reminder_message(calculator: PayPeriodCalculator,
                            reference_date: Optional[DateLike] = None,
                            team_name: str = 'Team',
                            include_extra_hours: bool = True,
                            contact: str = 'the payroll team') -> str:
    """The last-day-of-period reminder.

    Spells out which days belong to the ending period and which to the
    next one, since people get that boundary wrong most often.
    """
    current, upcoming = calculator.get_current_period_info(reference_date)
    ordinal = get_ordinal(current.number)
    today = current.end_date.format(LONG_DATE_FORMAT)
    tomorrow = upcoming.start_date.format(LONG_DATE_FORMAT)

    paragraphs = [
        f'Good Morning {team_name},',
        f'A Quick Reminder: The {ordinal} pay-period is fast approaching!',
        (f'Please begin to input your timesheet data today ({today}) end of day. '
         f'Please note that this paycheck will account for the full {_period_length_text(current)}. '
         f'This {ordinal} payroll period will include the dates from '
         f'{current.start_date.format(SHORT_DATE_FORMAT)} – {current.end_date.format(SHORT_DATE_FORMAT)}. '
         f'(Meaning that today ({today}) is also counted for the {ordinal} pay-period, '
         f'TOMORROW ({tomorrow}) is counted for the {get_ordinal(upcoming.number)} pay-period.)'),
    ]
    if include_extra_hours:
        paragraphs.append('For those of you that have been given extra hours, please ensure to '
                          'input them into your timesheet for this pay-period as well.')
    paragraphs.extend([
        f'Please expect the payment to go through on the {current.payment_date.format(LONG_DATE_FORMAT)}.',
        f'If you have any questions or concerns, please do not hesitate to reach out to {contact}.',
        'Thank you.',
        '@here',
    ])
    return '\n\n'.join(paragraphs)


def format_advance_notice(period: PayPeriod) -> str:
    return (f'🔔 **Pay Period Ending Soon**\n\n'
            f'The current pay period ({period.start_date.format("MMM D")} - '
            f'{period.end_date.format("MMM D")}) ends this **{period.end_date.format("dddd")}**.\n\n'
            f'Please ensure your timesheet is complete by end of day.')


def format_compliance_message(report: HoursReport) -> str:
    summary = report.summary
    title = 'Compliance Report'
    if report.period is not None:
        title = f'Pay Period {report.period.number} Compliance Report'
    message = (f'**{title}**\n\n'
               f'{summary.compliance_rate:.1f}% of team members met their hour requirements.\n\n'
               f'```\n{report.table.rstrip()}\n```')
    stats = report.stats
    if stats is not None and (stats.malformed_records or stats.records_outside_period):
        message += (f'\n\n_{stats.malformed_records} malformed rows skipped, '
                    f'{stats.records_outside_period} rows outside the period._')
    return message


def format_followup_message(record: UserComplianceRecord, period: Optional[PayPeriod]) -> str:
    """Personal nudge for someone short on hours."""
    lines = ['⚠️ **Timesheet Reminder**',
             '',
             f'{record.display_name} has an incomplete timesheet:',
             '',
             f'📊 Current hours: {record.hours_worked:.2f}h',
             f'⏳ Missing hours: {-record.difference:.2f}h']
    if period is not None:
        lines.append(f'📅 Pay period: {period.start} - {period.end}')
    lines.extend(['', 'Please complete your timesheet before the deadline.'])
    return '\n'.join(lines)


class WebhookSink:
    """Post messages to chat channels through incoming webhooks.

    `direct_webhook` is a URL template with a `{chat_id}` field, used for
    destinations that are neither a configured channel nor a URL.
    """

    def __init__(self, channels: Dict[str, str], timeout: float = WEBHOOK_TIMEOUT,
                 session: Optional[requests.Session] = None,
                 direct_webhook: Optional[str] = None) -> None:
        self.logger = logging.getLogger('WebhookSink')
        self.channels = channels
        self.timeout = timeout
        self.direct_webhook = direct_webhook
        self._session = session or requests.Session()

    def _webhook_url(self, destination: str) -> str:
        if destination in self.channels:
            return self.channels[destination]
        if destination.startswith(('https://', 'http://')):
            return destination
        if self.direct_webhook:
            return self.direct_webhook.format(chat_id=quote(destination, safe=''))
        raise ConfigurationError(f'No webhook configured for channel {destination!r}')

    def send_message(self, destination: str, text: str) -> None:
        """Send `text` to a configured channel name or a webhook URL.

        Raises:
            ConfigurationError: for an unknown channel name
            ExternalServiceError: if the webhook call fails
        """
        url = self._webhook_url(destination)
        try:
            response = self._session.post(url, json={'text': text}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ExternalServiceError(f'No response from webhook for {destination}: {exc}') from exc
        if not response.ok:
            raise ExternalServiceError(
                f'Webhook for {destination} failed with status {response.status_code}: {response.text}')
        self.logger.info(f'Sent {len(text)} characters to {destination}')


class ConsoleSink:
    """Dry-run sink: print what would have been sent."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def send_message(self, destination: str, text: str) -> None:
        self.console.rule(f'[b]Would send to {destination}[/b]')
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)


class ReminderService:
    """Decide when to remind, then hand messages to a sink.

    The sink is anything with `send_message(destination, text)`.
    """

    def __init__(self, calculator: PayPeriodCalculator, sink, contact: str = 'the payroll team') -> None:
        self.logger = logging.getLogger('ReminderService')
        self.calculator = calculator
        self.sink = sink
        self.contact = contact

    def send_period_reminder(self, channels: List[str],
                             reference_date: Optional[DateLike] = None,
                             force: bool = False,
                             include_extra_hours: bool = True) -> List[str]:
        """Remind `channels` if `reference_date` is the last day of its period.

        Returns:
            list[str]: the channels that were sent to
        """
        if not force and not self.calculator.is_last_day_of_period(reference_date):
            days = self.calculator.get_days_until_period_end(reference_date)
            self.logger.info(f'Not the last day of the period ({days} days left); no reminder')
            return []
        sent = []
        for channel in channels:
            message = format_reminder_message(self.calculator, reference_date,
                                              team_name=channel.title(),
                                              include_extra_hours=include_extra_hours,
                                              contact=self.contact)
            self.sink.send_message(channel, message)
            sent.append(channel)
        return sent

    def send_advance_notice(self, channels: List[str],
                            reference_date: Optional[DateLike] = None) -> List[str]:
        message = format_advance_notice(self.calculator.get_current_pay_period(reference_date))
        for channel in channels:
            self.sink.send_message(channel, message)
        return list(channels)

    def send_compliance_report(self, destination: str, report: HoursReport) -> None:
        self.sink.send_message(destination, format_compliance_message(report))

    def send_followups(self, report: HoursReport, directory: UserDirectory) -> List[str]:
        """Message every active user who is short on hours, by chat id.

        A failed delivery is logged and the remaining users still get
        theirs.

        Returns:
            list[str]: keys of the users that were messaged
        """
        sent = []
        for record in report.non_compliant():
            if record.difference >= 0:
                continue
            user = directory.get(record.user_key)
            if user is None or not user.active:
                self.logger.info(f'No follow-up for {record.user_key}: not an active roster user')
                continue
            if not user.chat_id:
                self.logger.warning(f'No follow-up for {user.key}: no chat id on the roster')
                continue
            try:
                self.sink.send_message(user.chat_id, format_followup_message(record, report.period))
            except ExternalServiceError as exc:
                self.logger.error(f'Follow-up to {user.key} failed: {exc}')
                continue
            sent.append(user.key)
        self.logger.info(f'Sent {len(sent)} follow-up(s)')
        return sent
