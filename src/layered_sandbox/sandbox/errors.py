"""Error hierarchy for policy compilation and executor handoff."""

from __future__ import annotations


class SandboxError(RuntimeError):
    """Base error for sandbox launcher failures."""


class PolicyError(SandboxError, ValueError):
    """Raised when a policy violates its invariants."""


class PolicyFileError(PolicyError):
    """Raised when the read-only policy file exists but cannot be read."""


class ExecutorError(SandboxError):
    """Raised when the external executor cannot be started."""


class ExecutorNotFoundError(ExecutorError):
    """Raised when a required executor binary is not on ``PATH``."""


__all__ = [
    "ExecutorError",
    "ExecutorNotFoundError",
    "PolicyError",
    "PolicyFileError",
    "SandboxError",
]
