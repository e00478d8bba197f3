# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Team roster: who is who across Kimai and chat, and how many hours they owe"""

import json
import logging
from dataclasses import dataclass, field
from os.path import isfile
from typing import Any, Dict, FrozenSet, Iterable, Optional

from rich.console import Console, ConsoleOptions, RenderResult
from rich.table import Table

from errors import ConfigurationError

DEFAULT_EXPECTED_HOURS = 80.0


@dataclass(frozen=True)
class User:
    """One person on the roster.

    `key` is the canonical identity timesheet rows are mapped onto (the
    Kimai username); `aliases` are the extra spellings that also resolve
    to this person.
    """
    key: str
    display_name: str
    expected_hours: Optional[float] = None
    aliases: FrozenSet[str] = field(default_factory=frozenset)
    email: Optional[str] = None
    chat_id: Optional[str] = None
    active: bool = True

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'User':
        """Build a user from one entry of the roster JSON.

        The roster keeps per-service ids under `services`; the Kimai
        username becomes the canonical key, falling back to the roster id
        and then the name.
        """
        services = raw.get('services') or {}
        kimai = services.get('kimai') or {}
        chat = services.get('pumble') or {}
        name = raw.get('name') or raw.get('username') or raw.get('id')
        key = kimai.get('username') or raw.get('username') or raw.get('id') or name
        if not key:
            raise ConfigurationError(f'Roster entry has no usable identity: {raw!r}')

        aliases = {str(alias) for alias in raw.get('aliases', [])}
        for alias in (raw.get('id'), raw.get('username'), raw.get('email'), kimai.get('id')):
            if alias is not None and alias != '':
                aliases.add(str(alias))

        expected = raw.get('expectedHours', raw.get('expected_hours'))
        if expected is not None:
            try:
                expected = float(expected)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f'expectedHours for {key!r} is not a number: {expected!r}') from exc

        return cls(key=str(key),
                   display_name=str(name or key),
                   expected_hours=expected,
                   aliases=frozenset(aliases),
                   email=raw.get('email'),
                   chat_id=chat.get('id'),
                   active=bool(raw.get('active', True)))


class UserDirectory:
    """Case-insensitive alias index over the roster, built once."""

    def __init__(self, users: Iterable[User],
                 default_expected_hours: float = DEFAULT_EXPECTED_HOURS) -> None:
        self.logger = logging.getLogger('UserDirectory')
        self.default_expected_hours = default_expected_hours
        self._users: Dict[str, User] = {}
        self._alias_index: Dict[str, User] = {}
        for user in users:
            self._users[user.key] = user
            for alias in (user.key, user.display_name, *user.aliases):
                self._index(alias, user)

    def _index(self, alias: str, user: User) -> None:
        folded = alias.strip().casefold()
        if not folded:
            return
        known = self._alias_index.get(folded)
        if known is not None and known.key != user.key:
            self.logger.warning(f'Alias {alias!r} already maps to {known.key}; '
                                f'ignoring it for {user.key}')
            return
        self._alias_index[folded] = user

    @classmethod
    def from_json(cls, path: str, default_expected_hours: float = DEFAULT_EXPECTED_HOURS) -> 'UserDirectory':
        """Load the roster JSON (`{"users": [...]}`).

        Raises:
            ConfigurationError: if the file is missing or not a roster
        """
        if not isfile(path):
            raise ConfigurationError(f'User directory not found: {path}')
        with open(path, encoding='utf-8') as roster:
            try:
                data = json.load(roster)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f'User directory {path} is not valid JSON: {exc}') from exc
        if not isinstance(data, dict) or not isinstance(data.get('users'), list):
            raise ConfigurationError(f'User directory {path} has no "users" list')
        directory = cls(map(User.from_dict, data['users']),
                        default_expected_hours=default_expected_hours)
        directory.logger.debug(f'Loaded {len(directory)} users from {path}')
        return directory

    def find_by_alias(self, text: Optional[str]) -> Optional[User]:
        if not text:
            return None
        return self._alias_index.get(text.strip().casefold())

    def get(self, key: str) -> Optional[User]:
        return self._users.get(key)

    def expected_hours(self, user: Optional[User]) -> float:
        if user is None or user.expected_hours is None:
            return self.default_expected_hours
        return user.expected_hours

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self):
        return iter(self._users.values())

    def __rich_console__(self, console: Console, options: ConsoleOptions) -> RenderResult:
        # pylint: disable=unused-argument
        yield f"[b]UserDirectory:[/b] {len(self)} users"
        my_table = Table('key', 'display_name', 'expected_hours', 'aliases', 'active')
        for user in self._users.values():
            my_table.add_row(user.key,
                             user.display_name,
                             str(self.expected_hours(user)),
                             ', '.join(sorted(user.aliases)),
                             str(user.active))
        yield my_table
