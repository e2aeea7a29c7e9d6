from __future__ import annotations

from typing import Any


class RunnerHubError(RuntimeError):
    pass


class ExecutionError(RunnerHubError):
    """The runner binary exited nonzero, could not be spawned, or timed out."""

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        returncode: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out


class ParseMismatchError(RunnerHubError):
    """Live output did not contain the entry we expected to correlate."""


class NotFoundError(RunnerHubError):
    pass


class ForbiddenError(RunnerHubError):
    pass


class ConflictError(RunnerHubError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class RegistrationError(RunnerHubError):
    def __init__(self, message: str, *, description: str = "", compensated: bool = False) -> None:
        super().__init__(message)
        self.description = description
        self.compensated = compensated
