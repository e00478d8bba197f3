# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL
# pylint: disable=logging-fstring-interpolation

"""Append-only, checksummed store of raw timesheet exports, one directory per period.

Layout under the base path:

    <period_id>/v1.csv, v2.csv, ...        raw export of each version
    <period_id>/metadata.json              version index
    <period_id>/v1-v2-changes.txt          change report between versions
    <period_id>/.lock                      held while a version is allocated
"""

import csv
import fcntl
import hashlib
import json
import logging
import os
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from os.path import getmtime, getsize, isdir, isfile, join
from typing import Any, Dict, Iterator, List, Optional

import arrow

from errors import StorageError, ValidationError
from timesheet import parse_duration, read_timesheet_csv

METADATA_FILENAME = 'metadata.json'
LOCK_FILENAME = '.lock'
VERSION_FILE_PATTERN = re.compile(r'^v(\d+)\.csv$')
MAX_LISTED_RECORDS = 10
MIN_REPORTED_CHANGE_HOURS = 0.01


def content_checksum(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def content_lines(content: str) -> List[str]:
    return [line for line in content.splitlines() if line.strip()]


def count_records(content: str) -> int:
    """Non-blank lines minus the header."""
    return max(0, len(content_lines(content)) - 1)


@dataclass(frozen=True)
class Snapshot:
    """One stored version of a period's raw export."""
    period_id: str
    version: int
    extracted_at: arrow.Arrow
    checksum: str
    path: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def record_count(self) -> int:
        return self.metadata.get('recordCount', 0)

    @property
    def byte_size(self) -> int:
        return self.metadata.get('bytes', 0)


@dataclass(frozen=True)
class RecordLine:
    """A whole CSV line, plus the fields the change report shows."""
    line: str
    user: str
    duration: str
    activity: str


@dataclass(frozen=True)
class UserHoursChange:
    user: str
    old_hours: float
    new_hours: float

    @property
    def change(self) -> float:
        return self.new_hours - self.old_hours


@dataclass
class VersionComparison:
    """Line-level difference between two versions of a period.

    Lines are compared as opaque records: a line moved elsewhere in the
    file is not a change, and an edited line shows up as one removal plus
    one addition.
    """
    period_id: str
    old_version: int
    new_version: int
    added: List[RecordLine] = field(default_factory=list)
    removed: List[RecordLine] = field(default_factory=list)
    user_changes: List[UserHoursChange] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)

    def format_report(self, generated_at: Optional[arrow.Arrow] = None) -> str:
        generated_at = generated_at or arrow.utcnow()
        lines = [f'Pay Period {self.period_id} - Changes from v{self.old_version} to v{self.new_version}',
                 f'Generated: {generated_at.isoformat()}',
                 '=' * 60,
                 '',
                 'SUMMARY OF CHANGES',
                 '-' * 18,
                 f'Added entries: {len(self.added)}',
                 f'Removed entries: {len(self.removed)}',
                 '',
                 'HOURS CHANGES BY USER',
                 '-' * 21,
                 '']
        for change in self.user_changes:
            lines.append(f'{change.user:<25} {change.old_hours:>8.2f} → '
                         f'{change.new_hours:>8.2f} ({change.change:+.2f})')

        for title, marker, records in (('NEW ENTRIES ADDED', '+', self.added),
                                       ('ENTRIES REMOVED', '-', self.removed)):
            if not records:
                continue
            lines.extend(['', '', title, '-' * len(title)])
            for record in records[:MAX_LISTED_RECORDS]:
                if record.user and record.duration:
                    lines.append(f'{marker} {record.user} - {record.duration} - {record.activity or "N/A"}')
            if len(records) > MAX_LISTED_RECORDS:
                lines.append(f'... and {len(records) - MAX_LISTED_RECORDS} more entries')
        return '\n'.join(lines) + '\n'


@dataclass(frozen=True)
class SnapshotResult:
    """What `SnapshotStore.save` did: a new version, or the unchanged latest."""
    snapshot: Snapshot
    created: bool
    comparison: Optional[VersionComparison] = None
    changes_path: Optional[str] = None

    @property
    def version(self) -> int:
        return self.snapshot.version

    @property
    def checksum(self) -> str:
        return self.snapshot.checksum


def _record_lines(content: str) -> List[RecordLine]:
    lines = content_lines(content)
    if not lines:
        return []
    header = [name.strip() for name in next(csv.reader([lines[0]]))]
    records = []
    # dict.fromkeys: duplicate lines count once, first-seen order kept
    for line in dict.fromkeys(lines[1:]):
        row = dict(zip(header, next(csv.reader([line]))))
        records.append(RecordLine(line=line,
                                  user=row.get('User', '').strip(),
                                  duration=row.get('Duration', '').strip(),
                                  activity=row.get('Activity', '').strip()))
    return records


class SnapshotStore:
    """File-backed versioned storage of raw exports.

    Versions are append-only. Saving content identical to the latest
    version is a no-op. Version allocation holds an exclusive `flock` on
    the period's lock file, so concurrent savers of one period serialize.
    """

    def __init__(self, base_path: str = 'kimai-data') -> None:
        self.logger = logging.getLogger('SnapshotStore')
        self.base_path = base_path

    def period_path(self, period_id: str) -> str:
        return join(self.base_path, str(period_id))

    def metadata_path(self, period_id: str) -> str:
        return join(self.period_path(period_id), METADATA_FILENAME)

    def content_path(self, period_id: str, version: int) -> str:
        return join(self.period_path(period_id), f'v{version}.csv')

    def changes_path(self, period_id: str, old_version: int, new_version: int) -> str:
        return join(self.period_path(period_id), f'v{old_version}-v{new_version}-changes.txt')

    @contextmanager
    def _locked(self, period_id: str) -> Iterator[None]:
        try:
            os.makedirs(self.period_path(period_id), exist_ok=True)
            lock_file = open(join(self.period_path(period_id), LOCK_FILENAME), 'a', encoding='utf-8')
        except OSError as exc:
            raise StorageError(f'Cannot lock period {period_id}: {exc}') from exc
        with lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read_index(self, period_id: str) -> Dict[str, Any]:
        path = self.metadata_path(period_id)
        if not isfile(path):
            return {'versions': [], 'latest': None}
        try:
            with open(path, encoding='utf-8') as index:
                return json.load(index)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f'Cannot read version index {path}: {exc}') from exc

    def _write_index(self, period_id: str, index: Dict[str, Any]) -> None:
        path = self.metadata_path(period_id)
        temp_path = f'{path}.tmp'
        index['updatedAt'] = arrow.utcnow().isoformat()
        try:
            with open(temp_path, encoding='utf-8', mode='w') as temp:
                json.dump(index, temp, indent=' '*2)
            os.replace(temp_path, path)
        except OSError as exc:
            raise StorageError(f'Cannot write version index {path}: {exc}') from exc

    def _write_text(self, path: str, text: str, exclusive: bool = False) -> None:
        try:
            with open(path, encoding='utf-8', mode='x' if exclusive else 'w', newline='') as out:
                out.write(text)
        except OSError as exc:
            raise StorageError(f'Cannot write {path}: {exc}') from exc

    def _snapshot(self, period_id: str, entry: Dict[str, Any]) -> Snapshot:
        return Snapshot(period_id=str(period_id),
                        version=entry['version'],
                        extracted_at=arrow.get(entry['extractedAt']),
                        checksum=entry['checksum'],
                        path=self.content_path(period_id, entry['version']),
                        metadata=dict(entry.get('metadata') or {}))

    def _reconcile(self, period_id: str, index: Dict[str, Any]) -> Dict[str, Any]:
        """Adopt version files that were written but never made it into the index."""
        indexed = {entry['version'] for entry in index['versions']}
        next_version = max(indexed, default=0) + 1
        on_disk = set()
        for name in os.listdir(self.period_path(period_id)):
            match = VERSION_FILE_PATTERN.match(name)
            if match:
                on_disk.add(int(match.group(1)))

        adopted = False
        while next_version in on_disk:
            path = self.content_path(period_id, next_version)
            content = self.get_content(period_id, next_version) or ''
            self.logger.warning(f'Period {period_id}: adopting unindexed version {next_version}')
            index['versions'].append({
                'version': next_version,
                'extractedAt': arrow.get(getmtime(path)).isoformat(),
                'checksum': content_checksum(content),
                'metadata': {'recordCount': count_records(content),
                             'bytes': getsize(path),
                             'reconciled': True},
            })
            index['latest'] = next_version
            next_version += 1
            adopted = True
        if adopted:
            self._write_index(period_id, index)
        return index

    def save(self, period_id: str, content: str,
             metadata: Optional[Dict[str, Any]] = None) -> SnapshotResult:
        """Store `content` as the next version of `period_id`, unless unchanged.

        Args:
            period_id (str): the period key, usually the period number
            content (str): raw CSV export, stored byte for byte
            metadata (dict): extra fields kept in the version index

        Returns:
            SnapshotResult: `created` is False when the latest version
                            already has this checksum

        Raises:
            StorageError: on any write failure
        """
        period_id = str(period_id)
        with self._locked(period_id):
            index = self._reconcile(period_id, self._read_index(period_id))
            checksum = content_checksum(content)
            latest = index['versions'][-1] if index['versions'] else None
            if latest is not None and latest['checksum'] == checksum:
                self.logger.info(f'Period {period_id}: content unchanged, keeping v{latest["version"]}')
                return SnapshotResult(snapshot=self._snapshot(period_id, latest), created=False)

            version = latest['version'] + 1 if latest is not None else 1
            self._write_text(self.content_path(period_id, version), content, exclusive=True)

            entry = {
                'version': version,
                'extractedAt': arrow.utcnow().isoformat(),
                'checksum': checksum,
                'metadata': {**(metadata or {}),
                             'recordCount': count_records(content),
                             'bytes': len(content.encode('utf-8'))},
            }
            index['versions'].append(entry)
            index['latest'] = version
            self._write_index(period_id, index)
            self.logger.info(f'Period {period_id}: saved v{version} '
                             f'({entry["metadata"]["recordCount"]} records)')

            comparison = None
            changes_path = None
            if latest is not None:
                comparison = self.compare_versions(period_id, latest['version'], version)
                if comparison is not None and comparison.has_changes:
                    changes_path = self.changes_path(period_id, latest['version'], version)
                    self._write_text(changes_path, comparison.format_report())
            return SnapshotResult(snapshot=self._snapshot(period_id, entry), created=True,
                                  comparison=comparison, changes_path=changes_path)

    def get_all_versions(self, period_id: str) -> List[Snapshot]:
        if not isdir(self.period_path(period_id)):
            return []
        index = self._read_index(period_id)
        return [self._snapshot(period_id, entry) for entry in index['versions']]

    def get_version(self, period_id: str, version: int) -> Optional[Snapshot]:
        for snapshot in self.get_all_versions(period_id):
            if snapshot.version == version:
                return snapshot
        return None

    def get_latest(self, period_id: str) -> Optional[Snapshot]:
        if not isdir(self.period_path(period_id)):
            return None
        latest = self._read_index(period_id).get('latest')
        if latest is None:
            return None
        return self.get_version(period_id, latest)

    def get_content(self, period_id: str, version: int) -> Optional[str]:
        path = self.content_path(period_id, version)
        if not isfile(path):
            return None
        with open(path, encoding='utf-8', newline='') as stored:
            return stored.read()

    def list_periods(self) -> List[str]:
        if not isdir(self.base_path):
            return []
        periods = [name for name in os.listdir(self.base_path)
                   if isdir(join(self.base_path, name))]
        return sorted(periods, key=lambda name: (not name.isdigit(), int(name) if name.isdigit() else 0, name))

    def has_period(self, period_id: str) -> bool:
        return isfile(self.metadata_path(period_id))

    def _user_hours(self, content: str) -> Dict[str, float]:
        hours: Dict[str, float] = {}
        try:
            rows = read_timesheet_csv(content)
        except ValidationError as exc:
            self.logger.warning(f'Cannot total hours per user: {exc}')
            return hours
        for row in rows:
            user = str(row.get('User', '')).strip()
            try:
                seconds = parse_duration(row.get('Duration'))
            except ValidationError:
                continue
            if user:
                hours[user] = hours.get(user, 0.0) + seconds / 3600.0
        return hours

    def compare_versions(self, period_id: str, old_version: int,
                         new_version: int) -> Optional[VersionComparison]:
        """Diff two stored versions; None if either is missing."""
        old_content = self.get_content(period_id, old_version)
        new_content = self.get_content(period_id, new_version)
        if old_content is None or new_content is None:
            return None

        old_records = _record_lines(old_content)
        new_records = _record_lines(new_content)
        old_lines = {record.line for record in old_records}
        new_lines = {record.line for record in new_records}

        old_hours = self._user_hours(old_content)
        new_hours = self._user_hours(new_content)
        changes = []
        for user in dict.fromkeys([*old_hours, *new_hours]):
            change = UserHoursChange(user, old_hours.get(user, 0.0), new_hours.get(user, 0.0))
            if abs(change.change) > MIN_REPORTED_CHANGE_HOURS:
                changes.append(change)
        changes.sort(key=lambda change: abs(change.change), reverse=True)

        return VersionComparison(
            period_id=str(period_id),
            old_version=old_version,
            new_version=new_version,
            added=[record for record in new_records if record.line not in old_lines],
            removed=[record for record in old_records if record.line not in new_lines],
            user_changes=changes,
        )
