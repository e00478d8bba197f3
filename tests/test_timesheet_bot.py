"""Command line wiring, with Kimai and the webhooks replaced."""

import json

import pytest

import timesheet_bot
from kimai import KimaiExporter
from snapshots import SnapshotStore
from tests.conftest import make_csv

EXPORT = make_csv(('2025-06-20', '76:30', 'bob'), ('2025-06-21', '40:00', 'Carol Chen'),
                  ('2025-06-30', '8:00', 'bob'), ('someday', '1:00', 'bob'))


@pytest.fixture
def config(tmp_path):
    roster = tmp_path / 'users.json'
    roster.write_text(json.dumps({'users': [
        {'name': 'Bob Brown', 'expectedHours': 80,
         'services': {'kimai': {'username': 'bob'}, 'pumble': {'id': 'P-bob'}}},
        {'name': 'Carol Chen', 'expectedHours': 40, 'services': {'kimai': {'username': 'carol'}}},
    ]}), encoding='utf-8')
    path = tmp_path / 'settings.ini'
    path.write_text(f"""
[period]
base_number = 18
base_end_date = 2025-06-23

[kimai]
base_url = https://kimai.example.com
username = bot
password = secret

[storage]
path = {tmp_path / 'kimai-data'}

[users]
directory = {roster}

[channels]
general = https://hooks.example.com/general
""", encoding='utf-8')
    return str(path)


@pytest.fixture
def fake_export(monkeypatch):
    monkeypatch.setattr(KimaiExporter, 'export_csv', lambda self, period: EXPORT)


def test_status(config, capsys):
    assert timesheet_bot.main(['--config', config, 'status', '--date', '2025-06-20']) == 0
    output = capsys.readouterr().out
    assert '#18' in output
    assert 'Days until period end: 3' in output


def test_pull_stores_and_reports(config, fake_export, tmp_path, capsys):
    assert timesheet_bot.main(['--config', config, 'pull', '--period', '18']) == 0
    assert 'Saved version 1 of pay period 18' in capsys.readouterr().out
    store = SnapshotStore(str(tmp_path / 'kimai-data'))
    assert store.get_content('18', 1) == EXPORT
    with open(tmp_path / 'kimai-data' / '18' / 'hours-report.txt', encoding='utf-8') as report:
        content = report.read()
    assert 'Excluded (outside period): 1' in content
    assert 'Malformed rows: 1' in content

    assert timesheet_bot.main(['--config', config, 'pull', '--period', '18']) == 0
    assert 'No changes since version 1' in capsys.readouterr().out
    assert len(store.get_all_versions('18')) == 1


def test_report_from_stored_data(config, fake_export, capsys):
    timesheet_bot.main(['--config', config, 'pull', '--period', '18'])
    capsys.readouterr()
    assert timesheet_bot.main(['--config', config, 'report', '--period', '18', '--text']) == 0
    output = capsys.readouterr().out
    assert 'Pay Period #18' in output
    assert '-3.50' in output


def test_report_without_data(config, capsys):
    assert timesheet_bot.main(['--config', config, 'report', '--period', '5']) == 1
    assert 'No stored data for pay period 5' in capsys.readouterr().out


def test_remind_dry_run(config, capsys):
    args = ['--config', config, 'remind', '--date', '2025-06-23', '--dry-run']
    assert timesheet_bot.main(args) == 0
    output = capsys.readouterr().out
    assert 'Would send to general' in output
    assert 'Good Morning General,' in output


def test_remind_not_last_day(config, capsys):
    assert timesheet_bot.main(['--config', config, 'remind', '--date', '2025-06-20', '--dry-run']) == 0
    assert 'nothing sent' in capsys.readouterr().out


def test_compliance_dry_run(config, fake_export, capsys):
    timesheet_bot.main(['--config', config, 'pull', '--period', '18'])
    capsys.readouterr()
    assert timesheet_bot.main(['--config', config, 'compliance', 'general', '--period', '18', '--dry-run']) == 0
    assert 'Pay Period 18 Compliance Report' in capsys.readouterr().out


def test_configuration_error_exits_non_zero(tmp_path, capsys):
    assert timesheet_bot.main(['--config', str(tmp_path / 'missing.ini'), 'status']) == 1
    assert 'ConfigurationError' in capsys.readouterr().out


@pytest.mark.parametrize('day', ['06/23/2025', '2025-02-30'])
def test_bad_date_exits_non_zero(config, capsys, day):
    assert timesheet_bot.main(['--config', config, 'status', '--date', day]) == 1
    assert 'ValidationError' in capsys.readouterr().out


def test_pull_survives_line_with_extra_fields(config, monkeypatch, tmp_path, capsys):
    export = EXPORT + '2025-06-21,09:00,17:00,8:00,bob,Internal,Dev,fix, typo,1\n'
    monkeypatch.setattr(KimaiExporter, 'export_csv', lambda self, period: export)
    assert timesheet_bot.main(['--config', config, 'pull', '--period', '18']) == 0
    with open(tmp_path / 'kimai-data' / '18' / 'hours-report.txt', encoding='utf-8') as report:
        assert 'Malformed rows: 2' in report.read()
    capsys.readouterr()
    assert timesheet_bot.main(['--config', config, 'report', '--period', '18', '--text']) == 0
    assert '-3.50' in capsys.readouterr().out


def test_remind_followup_dry_run(config, fake_export, capsys):
    timesheet_bot.main(['--config', config, 'pull', '--period', '18'])
    capsys.readouterr()
    assert timesheet_bot.main(['--config', config, 'remind', '--followup', '--period', '18', '--dry-run']) == 0
    output = capsys.readouterr().out
    assert 'Would send to P-bob' in output
    assert 'Bob Brown has an incomplete timesheet:' in output
    assert 'Missing hours: 3.50h' in output
    assert 'Carol Chen' not in output
    assert 'Sent 1 follow-up(s) for pay period 18' in output


def test_remind_followup_without_data(config, capsys):
    assert timesheet_bot.main(['--config', config, 'remind', '--followup', '--period', '5', '--dry-run']) == 1
    assert 'No compliance data for pay period 5' in capsys.readouterr().out
