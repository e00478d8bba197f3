# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Pull the team timesheet CSV export out of the Kimai web app"""

import logging
from typing import Dict, Optional

import requests
import urllib3
from bs4 import BeautifulSoup

from errors import ExternalServiceError
from payperiod import PayPeriod
from settings import KimaiSettings

KIMAI_DATE_FORMAT = 'M/D/YYYY'


class KimaiExporter:
    """Log into Kimai with a plain `requests` session and download CSV exports.

    Nothing here interprets the CSV; callers get the raw text.
    """

    def __init__(self, settings: KimaiSettings, session: Optional[requests.Session] = None) -> None:
        self.logger = logging.getLogger('KimaiExporter')
        self.settings = settings
        self._session = session or requests.Session()
        self._logged_in = False
        if not settings.verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self._session.headers.update({
            'accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
            'accept-language': 'en-US,en;q=0.5',
            'user-agent': 'timesheet-bot (+requests)',
        })

    def _url(self, path: str) -> str:
        return f'{self.settings.base_url}/{path.lstrip("/")}'

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self._url(path)
        self.logger.debug(f'{method} {url}')
        try:
            response = self._session.request(method, url, timeout=self.settings.timeout,
                                             verify=self.settings.verify, **kwargs)
        except requests.RequestException as exc:
            raise ExternalServiceError(f'{method} {url} failed: {exc}') from exc
        if not response.ok:
            raise ExternalServiceError(
                f'Bad response from {url}: {response.status_code} - {response.reason}')
        return response

    @staticmethod
    def _find_token(html: str, *names: str) -> Optional[str]:
        """Harvest a CSRF token from a hidden input or a meta tag."""
        page = BeautifulSoup(html, 'html.parser')
        for name in names:
            tag = page.find('input', attrs={'name': name})
            if tag is not None and tag.get('value'):
                return tag['value']
        for name in ('csrf-token', '_token'):
            tag = page.find('meta', attrs={'name': name})
            if tag is not None and tag.get('content'):
                return tag['content']
        return None

    def login(self) -> None:
        """Log into Kimai.

        Raises:
            ExternalServiceError: if the login form cannot be read or the
                                  credentials are refused
        """
        login_page = self._request('GET', '/en/login')
        token = self._find_token(login_page.text, '_csrf_token')
        if token is None:
            raise ExternalServiceError('No CSRF token on the Kimai login page')

        self.logger.debug(f'Logging into Kimai as {self.settings.username}')
        response = self._request('POST', '/en/login_check', data={
            '_username': self.settings.username,
            '_password': self.settings.password,
            '_csrf_token': token,
        })
        # a refused login lands back on the login form
        if '/login' in response.url:
            raise ExternalServiceError(f'Kimai refused the login for {self.settings.username}')
        self._logged_in = True

    def _filters(self, period: PayPeriod) -> Dict[str, str]:
        return {
            'daterange': (f'{period.start_date.format(KIMAI_DATE_FORMAT)} - '
                          f'{period.end_date.format(KIMAI_DATE_FORMAT)}'),
            'state': '1',
            'billable': '0',
            'exported': '1',
            'orderBy': 'begin',
            'order': 'DESC',
            'searchTerm': '',
        }

    def export_csv(self, period: PayPeriod) -> str:
        """Download every team timesheet entry in `period` as CSV text.

        Args:
            period (PayPeriod): the pay period to filter on

        Returns:
            str: the raw CSV export
        """
        if not self._logged_in:
            self.login()

        filters = self._filters(period)
        self.logger.info(f'Exporting Kimai timesheets for {filters["daterange"]}')
        listing = self._request('GET', '/en/team/timesheet/', params=filters)
        token = self._find_token(listing.text, '_token', 'csrf_token', '_csrf_token')
        if token is None:
            raise ExternalServiceError('No CSRF token on the Kimai team timesheet page')

        response = self._request('POST', '/en/team/timesheet/export/',
                                 data={**filters, 'exporter': 'csv', '_token': token})
        content_type = response.headers.get('content-type', '')
        if 'html' in content_type:
            raise ExternalServiceError(f'Kimai returned {content_type} instead of a CSV export')
        # Kimai prefixes its CSV with a UTF-8 BOM
        csv_data = response.content.decode('utf-8-sig')
        self.logger.debug(f'Export is {len(csv_data)} characters')
        return csv_data
