#!/usr/bin/env python3
"""
Error types raised by controllers, the validator and the worker.

Frontends render these with str(); the message is meant for the user.
"""

from typing import Optional


class FanControlError(Exception):
    """Base class for every fan control failure."""


class FanNotFound(FanControlError):
    def __init__(self, fan_id: str):
        super().__init__(f"fan '{fan_id}' not found")
        self.fan_id = fan_id


class NotControllable(FanControlError):
    """The backend has no write capability for this fan."""

    def __init__(self, fan_id: str):
        super().__init__(f"fan '{fan_id}' is not controllable")
        self.fan_id = fan_id


class NotSupported(FanControlError):
    """The operation does not exist on this firmware or platform."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} is not supported on this platform")
        self.operation = operation


class InvalidCurve(FanControlError):
    """Validator rejection. Never bypassed."""

    def __init__(self, reason: str, point_index: Optional[int] = None):
        super().__init__(f"invalid fan curve: {reason}")
        self.reason = reason
        self.point_index = point_index


class SubprocessFailure(FanControlError):
    """
    The firmware helper process failed.

    Covers a missing interpreter (exit_status None), a non-zero exit and a
    denied elevation. elevation_required marks the last case so frontends
    can tell the user to rerun as Administrator.
    """

    def __init__(self, exit_status: Optional[int], stderr: str,
                 elevation_required: bool = False):
        if elevation_required:
            message = ("firmware call was denied: run as Administrator "
                       f"(exit {exit_status}): {stderr}")
        elif exit_status is None:
            message = f"could not run firmware helper: {stderr}"
        else:
            message = f"firmware helper exited with status {exit_status}: {stderr}"
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr
        self.elevation_required = elevation_required


class ParseFailure(FanControlError):
    """A single malformed record in helper output."""

    def __init__(self, line: str, reason: str = "malformed record"):
        super().__init__(f"{reason}: {line!r}")
        self.line = line
        self.reason = reason


class PermissionDenied(FanControlError):
    def __init__(self, target: str):
        super().__init__(f"permission denied: {target} (run as root or adjust permissions)")
        self.target = target


class DeviceUnavailable(FanControlError):
    """Discovery found no fans."""

    def __init__(self, detail: str = "no fans detected"):
        super().__init__(detail)


class InterpreterMissing(SubprocessFailure):
    """The helper interpreter could not be launched at all."""

    def __init__(self, command: str, detail: str):
        super().__init__(None, f"{command}: {detail}")
        self.command = command
