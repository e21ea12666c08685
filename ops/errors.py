"""Exceptions raised by the operations tooling"""

from typing import Sequence


class OpsError(Exception):
    """Base class for operational failures"""


class ConfigurationError(OpsError):
    """Missing or invalid settings"""


class CommandError(OpsError):
    """An external command exited non-zero or could not be started"""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"{' '.join(self.argv)} exited with {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class RetryError(OpsError):
    """All attempts of a retried operation failed"""

    def __init__(self, description: str, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")


class WaitTimeout(OpsError):
    """A polled condition did not become true before the deadline"""
