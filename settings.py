# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Settings file handling (settings.ini)"""

import configparser
import logging
from dataclasses import dataclass
from datetime import date
from os.path import isfile
from typing import Dict, Optional

from errors import ConfigurationError
from payperiod import (DEFAULT_PAYMENT_DELAY_DAYS, DEFAULT_PERIOD_LENGTH_DAYS,
                       AnchorConfig)
from users import DEFAULT_EXPECTED_HOURS
from zonedates import BUSINESS_TIMEZONE, ISO_DATE_PATTERN, resolve_zone

DEFAULT_SETTINGS_FILE = 'settings.ini'
_REQUIRED = object()


@dataclass(frozen=True)
class KimaiSettings:
    base_url: str
    username: str
    password: str
    verify: bool = True
    timeout: float = 30.0


class Settings:
    """Typed view over settings.ini.

    Every accessor validates as it reads and raises ConfigurationError
    naming the offending `[section] key`.
    """

    def __init__(self, path: str = DEFAULT_SETTINGS_FILE) -> None:
        self.logger = logging.getLogger('Settings')
        if not isfile(path):
            raise ConfigurationError(
                f'{path} not found; please copy settings.ini.example to {path} '
                'and configure per the comments')
        self.logger.debug(f'Loading settings file {path}')
        self.path = path
        self._config = configparser.ConfigParser(interpolation=None)
        self._config.optionxform = lambda option: option  # return case-sensitive keys
        try:
            self._config.read(path, encoding='utf-8')
        except configparser.Error as exc:
            raise ConfigurationError(f'Cannot parse {path}: {exc}') from exc

    def _get(self, section: str, key: str, fallback=_REQUIRED) -> str:
        if self._config.has_option(section, key):
            return self._config[section][key].strip()
        if fallback is _REQUIRED:
            raise ConfigurationError(f'Missing [{section}] {key} in {self.path}')
        return fallback

    def _get_int(self, section: str, key: str, fallback=_REQUIRED) -> int:
        value = self._get(section, key, fallback)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f'[{section}] {key} must be an integer, got {value!r}') from exc

    def _get_float(self, section: str, key: str, fallback=_REQUIRED) -> float:
        value = self._get(section, key, fallback)
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f'[{section}] {key} must be a number, got {value!r}') from exc

    def _get_bool(self, section: str, key: str, fallback: bool) -> bool:
        if not self._config.has_option(section, key):
            return fallback
        try:
            return self._config.getboolean(section, key)
        except ValueError as exc:
            raise ConfigurationError(f'[{section}] {key} must be true or false') from exc

    @property
    def timezone(self) -> str:
        zone = self._get('period', 'timezone', BUSINESS_TIMEZONE)
        resolve_zone(zone)
        return zone

    @property
    def anchor(self) -> AnchorConfig:
        end_text = self._get('period', 'base_end_date')
        if not ISO_DATE_PATTERN.match(end_text):
            raise ConfigurationError(f'[period] base_end_date must be YYYY-MM-DD, got {end_text!r}')
        try:
            base_end = date.fromisoformat(end_text)
        except ValueError as exc:
            raise ConfigurationError(f'[period] base_end_date is not a real date: {end_text!r}') from exc
        return AnchorConfig(
            base_period_number=self._get_int('period', 'base_number'),
            base_period_end_date=base_end,
            period_length_days=self._get_int('period', 'length_days', DEFAULT_PERIOD_LENGTH_DAYS),
            payment_delay_days=self._get_int('period', 'payment_delay_days', DEFAULT_PAYMENT_DELAY_DAYS),
        )

    @property
    def kimai(self) -> KimaiSettings:
        return KimaiSettings(
            base_url=self._get('kimai', 'base_url').rstrip('/'),
            username=self._get('kimai', 'username'),
            password=self._get('kimai', 'password'),
            verify=self._get_bool('kimai', 'verify', True),
            timeout=self._get_float('kimai', 'timeout', 30.0),
        )

    @property
    def storage_path(self) -> str:
        return self._get('storage', 'path', 'kimai-data')

    @property
    def users_path(self) -> str:
        return self._get('users', 'directory')

    @property
    def tolerance_hours(self) -> float:
        return self._get_float('report', 'tolerance_hours', 3.0)

    @property
    def default_expected_hours(self) -> float:
        return self._get_float('report', 'default_expected_hours', DEFAULT_EXPECTED_HOURS)

    @property
    def channels(self) -> Dict[str, str]:
        """Chat channel name -> incoming webhook URL."""
        if not self._config.has_section('channels'):
            return {}
        return {name: url.strip() for name, url in self._config['channels'].items()}

    @property
    def direct_webhook(self) -> Optional[str]:
        """Webhook URL template for direct messages, with a `{chat_id}` field."""
        template = self._get('followups', 'direct_webhook', '')
        if not template:
            return None
        if '{chat_id}' not in template:
            raise ConfigurationError(f'[followups] direct_webhook must contain {{chat_id}}, got {template!r}')
        return template
