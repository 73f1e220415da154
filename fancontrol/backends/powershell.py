#!/usr/bin/env python3
"""
PowerShell subprocess transport.

The WMI bindings available to us can only query; vendor method calls have
to go through a short-lived powershell.exe that prints plain text. One
process per logical operation, nothing kept alive between calls.
"""

import logging
import subprocess
from typing import List, Optional

from ..errors import InterpreterMissing, SubprocessFailure

TRACE = 5  # below DEBUG, enabled by -vvv

# Fragments PowerShell and WMI print when the caller is not elevated.
_ELEVATION_MARKERS = (
    "access denied",
    "access is denied",
    "unauthorizedaccess",
    "0x80041003",
    "requires elevation",
)

# Make WMI failures terminate the script with a non-zero exit.
_PREAMBLE = "$ErrorActionPreference = 'Stop'; "


def needs_elevation(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _ELEVATION_MARKERS)


class PowerShellRunner:
    """Runs one script per call and returns its trimmed stdout."""

    def __init__(self, executable: str = "powershell.exe", timeout: Optional[float] = None):
        """
        Args:
            executable: Interpreter to launch
            timeout: Seconds to wait for one call; None waits indefinitely
        """
        self.executable = executable
        self.timeout = timeout

    def command_line(self, script: str) -> List[str]:
        return [self.executable, "-NoProfile", "-NonInteractive", "-Command", _PREAMBLE + script]

    def run(self, script: str) -> str:
        """
        Execute a script and return its standard output.

        Raises:
            InterpreterMissing: the interpreter could not be launched
            SubprocessFailure: non-zero exit, denied elevation or timeout
        """
        logging.log(TRACE, "powershell script: %s", script)
        try:
            result = subprocess.run(
                self.command_line(script),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logging.warning("powershell call timed out after %ss", self.timeout)
            raise SubprocessFailure(None, f"timed out after {self.timeout}s")
        except OSError as exc:
            logging.warning("powershell failed to launch: %s", exc)
            raise InterpreterMissing(self.executable, str(exc))

        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            logging.warning("powershell exited %d: %s", result.returncode, stderr)
            raise SubprocessFailure(result.returncode, stderr,
                                    elevation_required=needs_elevation(stderr))
        if stderr:
            logging.debug("powershell stderr: %s", stderr)

        stdout = (result.stdout or "").strip()
        logging.log(TRACE, "powershell stdout: %s", stdout)
        return stdout
