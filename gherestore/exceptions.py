# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Orchestrator Exceptions - Custom exceptions for the gherestore package.

Every exception carries the process exit code the CLI reports for it.
"""


class RestoreError(Exception):
    """Base exception for all restore errors."""

    exit_code = 1

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(RestoreError):
    """Raised when required configuration is missing or invalid."""

    exit_code = 2


class DataDirectoryError(RestoreError):
    """Raised when the local data directory cannot be used."""

    exit_code = 8


class PreconditionFailure(RestoreError):
    """Raised when the snapshot and target cannot be combined safely."""

    pass


class ConnectivityFailure(RestoreError):
    """Raised when the target cannot be reached or probed."""

    pass


class ConfirmationDeclined(RestoreError):
    """Raised when the operator declines an interactive confirmation."""

    pass


class StepFailure(RestoreError):
    """Raised when one or more restore steps fail."""

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        steps: list[str] | None = None,
        output: str = "",
    ):
        super().__init__(message, details)
        self.steps = steps or []
        self.output = output


class RemoteOperationError(StepFailure):
    """Raised when a remote operation exits non-zero."""

    pass


class InvalidStatusTransition(RestoreError):
    """Raised when the restore status would move backwards."""

    pass


class JournalError(RestoreError):
    """Raised when the local run journal cannot be read or written."""

    pass
