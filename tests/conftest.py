"""Shared fixtures: the reference anchor, a small roster and CSV builders."""

import time
from datetime import date

import pytest

from hours_report import HoursReportGenerator
from payperiod import AnchorConfig, PayPeriodCalculator
from timesheet import CSV_COLUMNS, TimesheetProcessor
from users import User, UserDirectory

HEADER = ','.join(CSV_COLUMNS)


def csv_line(day, duration, user, activity='Development', project='Internal'):
    return f'{day},09:00,17:00,{duration},{user},{project},{activity},work,1'


def make_csv(*rows):
    """CSV export text with a header and one line per (date, duration, user) row."""
    return '\n'.join([HEADER, *(csv_line(*row) for row in rows)]) + '\n'


@pytest.fixture
def anchor():
    return AnchorConfig(base_period_number=18,
                        base_period_end_date=date(2025, 6, 23),
                        period_length_days=14,
                        payment_delay_days=7)


@pytest.fixture
def calculator(anchor):
    return PayPeriodCalculator(anchor, 'America/New_York')


@pytest.fixture
def period_18(calculator):
    return calculator.get_period(18)


@pytest.fixture
def directory():
    return UserDirectory([
        User(key='alice', display_name='Alice Adams', expected_hours=80.0,
             aliases=frozenset({'alice@example.com', 'Alice A'})),
        User(key='bob', display_name='Bob Brown', expected_hours=80.0),
        User(key='carol', display_name='Carol Chen', expected_hours=40.0),
        User(key='dave', display_name='Dave Davis', expected_hours=0.0),
    ])


@pytest.fixture
def processor(directory):
    return TimesheetProcessor(directory, 'America/New_York')


@pytest.fixture
def generator(directory):
    return HoursReportGenerator(directory)


@pytest.fixture
def process_timezone(monkeypatch):
    """Run a test with the process in some other local timezone."""
    def use(zone):
        monkeypatch.setenv('TZ', zone)
        time.tzset()
    yield use
    monkeypatch.undo()
    time.tzset()
