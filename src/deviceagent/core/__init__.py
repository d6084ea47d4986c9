"""Core module - Shared configuration and types."""

from deviceagent.core.config import AgentConfig, RetryPolicy, ScanLimits
from deviceagent.core.types import RecordKind, RegistrationState

__all__ = [
    # Config
    "AgentConfig",
    "RetryPolicy",
    "ScanLimits",
    # Types
    "RecordKind",
    "RegistrationState",
]
