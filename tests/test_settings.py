"""settings.ini parsing and validation."""

from datetime import date

import pytest

from errors import ConfigurationError
from settings import Settings

SETTINGS_INI = """
[period]
base_number = 18
base_end_date = 2025-06-23
timezone = America/New_York

[kimai]
base_url = https://kimai.example.com/
username = bot
password = p%ss
verify = false

[users]
directory = users.json

[channels]
General = https://hooks.example.com/general
payroll = https://hooks.example.com/payroll
"""


def write_settings(tmp_path, text):
    path = tmp_path / 'settings.ini'
    path.write_text(text, encoding='utf-8')
    return Settings(str(path))


class TestSettings:

    def test_anchor(self, tmp_path):
        anchor = write_settings(tmp_path, SETTINGS_INI).anchor
        assert anchor.base_period_number == 18
        assert anchor.base_period_end_date == date(2025, 6, 23)
        assert anchor.period_length_days == 14
        assert anchor.payment_delay_days == 7

    def test_kimai(self, tmp_path):
        kimai = write_settings(tmp_path, SETTINGS_INI).kimai
        assert kimai.base_url == 'https://kimai.example.com'
        assert kimai.password == 'p%ss'
        assert kimai.verify is False
        assert kimai.timeout == 30.0

    def test_defaults(self, tmp_path):
        settings = write_settings(tmp_path, SETTINGS_INI)
        assert settings.timezone == 'America/New_York'
        assert settings.storage_path == 'kimai-data'
        assert settings.users_path == 'users.json'
        assert settings.tolerance_hours == 3.0
        assert settings.default_expected_hours == 80.0

    def test_channel_names_keep_case(self, tmp_path):
        assert write_settings(tmp_path, SETTINGS_INI).channels == {
            'General': 'https://hooks.example.com/general',
            'payroll': 'https://hooks.example.com/payroll',
        }

    def test_no_channels(self, tmp_path):
        assert write_settings(tmp_path, '[period]\nbase_number = 1\n').channels == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            Settings(str(tmp_path / 'nope.ini'))

    @pytest.mark.parametrize('old, new', [
        ('base_number = 18', 'base_number = eighteen'),
        ('base_number = 18\n', ''),
        ('base_end_date = 2025-06-23', 'base_end_date = 06/23/2025'),
        ('base_end_date = 2025-06-23', 'base_end_date = 2025-02-30'),
        ('[period]', '[period]\nlength_days = 0'),
    ])
    def test_bad_anchor(self, tmp_path, old, new):
        settings = write_settings(tmp_path, SETTINGS_INI.replace(old, new))
        with pytest.raises(ConfigurationError):
            settings.anchor

    @pytest.mark.parametrize('zone', ['Mars/Base', '', 'local', '+05:00'])
    def test_bad_timezone(self, tmp_path, zone):
        settings = write_settings(tmp_path, SETTINGS_INI.replace('America/New_York', zone))
        with pytest.raises(ConfigurationError):
            settings.timezone

    def test_bad_verify_flag(self, tmp_path):
        settings = write_settings(tmp_path, SETTINGS_INI.replace('verify = false', 'verify = maybe'))
        with pytest.raises(ConfigurationError):
            settings.kimai

    def test_missing_kimai_password(self, tmp_path):
        settings = write_settings(tmp_path, SETTINGS_INI.replace('password = p%ss\n', ''))
        with pytest.raises(ConfigurationError, match='password'):
            settings.kimai

    def test_direct_webhook(self, tmp_path):
        text = SETTINGS_INI + '\n[followups]\ndirect_webhook = https://hooks.example.com/dm/{chat_id}\n'
        assert write_settings(tmp_path, text).direct_webhook == 'https://hooks.example.com/dm/{chat_id}'

    def test_direct_webhook_defaults_to_none(self, tmp_path):
        assert write_settings(tmp_path, SETTINGS_INI).direct_webhook is None

    def test_direct_webhook_needs_chat_id_field(self, tmp_path):
        text = SETTINGS_INI + '\n[followups]\ndirect_webhook = https://hooks.example.com/dm\n'
        with pytest.raises(ConfigurationError, match='chat_id'):
            write_settings(tmp_path, text).direct_webhook
