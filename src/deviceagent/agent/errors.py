"""Error taxonomy for the device agent.

Transport failures are values (see result.py), not exceptions. The
exceptions below are raised by command handlers and collaborators and are
converted into task outcomes at the task engine boundary:

- TransportError: carries a failed NetworkResult - retried
- PermissionDeniedError: local capability missing - reported as success
- NotFoundError: local file or server artifact absent - terminal failure
- MalformedCommandError: required parameter missing - dropped / failed
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from deviceagent.agent.result import NetworkResult


class AgentError(Exception):
    """Base exception for device agent errors."""


class TransportError(AgentError):
    """A server call did not succeed.

    Attributes:
        result: The failed NetworkResult (ApiError or NetworkError).
    """

    def __init__(self, operation: str, result: NetworkResult) -> None:
        from deviceagent.agent.result import describe

        self.operation = operation
        self.result = result
        super().__init__(f"{operation} failed: {describe(result)}")


class PermissionDeniedError(AgentError):
    """A local capability required by an operation is not granted.

    Attributes:
        capability: Name of the missing capability.
    """

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"Permission '{capability}' not granted")


class NotFoundError(AgentError):
    """A local file or server artifact does not exist."""


class MalformedCommandError(AgentError):
    """A command is missing a required parameter."""

    def __init__(self, command: str, missing: str) -> None:
        self.command = command
        self.missing = missing
        super().__init__(f"Command '{command}' requires parameter '{missing}'")
