# -*- coding: utf-8 -*-
# SPDX-License-Identifier: FAFOL

"""Exceptions raised by the timesheet bot"""

from typing import Any


class TimesheetBotError(Exception):
    """Base class for everything the bot raises on purpose."""


class ConfigurationError(TimesheetBotError, ValueError):
    """Invalid or missing configuration: anchor fields, timezone, settings keys."""


class ValidationError(TimesheetBotError, ValueError):
    """A single input value (date, duration) failed validation."""

    def __init__(self, field: str, value: Any, reason: str) -> None:
        super().__init__(f'{field}={value!r}: {reason}')
        self.field = field
        self.value = value
        self.reason = reason


class ExternalServiceError(TimesheetBotError, RuntimeError):
    """The timesheet web app or the chat webhook misbehaved."""


class StorageError(TimesheetBotError, OSError):
    """Writing to the snapshot store failed."""
