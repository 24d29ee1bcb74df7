"""Execution composer: turn a layer sequence into a bubblewrap argument vector."""

from __future__ import annotations

import os
import shlex
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from layered_sandbox.constants import (
    DEFAULT_EXECUTOR,
    DEFAULT_SHELL,
    NULL_DEVICE,
    TRANSCRIPT_BINARY,
    TRANSCRIPT_TIMESTAMP_FORMAT,
)
from layered_sandbox.sandbox.errors import PolicyError
from layered_sandbox.sandbox.layers import MountKind, MountOperation
from layered_sandbox.sandbox.policy import NetworkMode, Policy

_NETWORK_FLAGS: dict[NetworkMode, str] = {
    NetworkMode.SHARED: "--share-net",
    NetworkMode.ISOLATED: "--unshare-net",
}

# Always requested: own session (no controlling-terminal injection) and
# termination together with the launcher.
LIFETIME_FLAGS: tuple[str, ...] = ("--new-session", "--die-with-parent")


@dataclass(frozen=True, slots=True)
class ExecutorInvocation:
    """Final argument vector handed to the executor."""

    argv: tuple[str, ...]
    command: tuple[str, ...]
    network_mode: NetworkMode
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def executable(self) -> str:
        return self.argv[0]

    def to_dict(self) -> dict[str, object]:
        return {
            "argv": list(self.argv),
            "command": list(self.command),
            "network_mode": self.network_mode.value,
            "env": dict(sorted(self.env.items())),
        }


def mount_arguments(operation: MountOperation) -> tuple[str, ...]:
    """Translate one operation into executor arguments, 1:1."""

    target = str(operation.target)
    kind = operation.kind
    if kind is MountKind.RO_BIND:
        return ("--ro-bind", target, target)
    if kind is MountKind.RW_BIND:
        return ("--bind", target, target)
    if kind is MountKind.OPAQUE_MASK:
        return ("--tmpfs", target)
    if kind is MountKind.NULL_FILE_MASK:
        return ("--ro-bind", str(NULL_DEVICE), target)
    if kind is MountKind.DEV:
        return ("--dev", target)
    if kind is MountKind.DEV_BIND:
        return ("--dev-bind", target, target)
    if kind is MountKind.PROC:
        return ("--proc", target)
    raise ValueError(f"unsupported mount kind: {kind!r}")


def compose(
    operations: Iterable[MountOperation],
    policy: Policy,
    command: Sequence[str],
    *,
    executor: str = DEFAULT_EXECUTOR,
) -> ExecutorInvocation:
    """Build the executor invocation for ``operations`` followed by ``command``."""

    parsed_command = _validate_command(command)
    argv: list[str] = [executor]
    for operation in operations:
        argv.extend(mount_arguments(operation))
    for name, value in policy.extra_env.items():
        argv.extend(("--setenv", name, value))
    argv.append(_NETWORK_FLAGS[policy.network_mode])
    argv.extend(LIFETIME_FLAGS)
    argv.extend(parsed_command)
    return ExecutorInvocation(
        argv=tuple(argv),
        command=parsed_command,
        network_mode=policy.network_mode,
        env=dict(policy.extra_env),
    )


def resolve_command(
    user_command: Sequence[str],
    *,
    default_command: Sequence[str] = (),
    autonomous_args: Sequence[str] = (),
    safe_mode: bool = False,
    environ: Mapping[str, str] | None = None,
) -> tuple[str, ...]:
    """Pick what runs inside the sandbox.

    With a configured default command (an agent), user arguments are appended
    to it; autonomous arguments are dropped in safe mode. Without one, the
    user command runs verbatim, or the interactive ``$SHELL`` when empty.
    """

    user = tuple(user_command)
    if default_command:
        base = tuple(default_command)
        if not safe_mode:
            base += tuple(autonomous_args)
        return base + user
    if user:
        return user
    env = os.environ if environ is None else environ
    return (env.get("SHELL") or DEFAULT_SHELL,)


def transcript_path(work_root: Path, prefix: str, *, now: datetime | None = None) -> Path:
    """Session transcript location: ``<prefix>_session_<timestamp>.log``."""

    stamp = (now or datetime.now()).strftime(TRANSCRIPT_TIMESTAMP_FORMAT)
    return work_root / f"{prefix}_session_{stamp}.log"


def wrap_with_transcript(
    invocation: ExecutorInvocation,
    log_path: Path,
    *,
    recorder: str = TRANSCRIPT_BINARY,
) -> tuple[str, ...]:
    """Wrap the invocation in ``script`` so its terminal I/O is recorded.

    ``script -c`` takes a shell string; every argument is quoted so nothing
    is re-interpreted.
    """

    return (recorder, "-q", "-e", "-c", shlex.join(invocation.argv), str(log_path))


def _validate_command(command: Sequence[str]) -> tuple[str, ...]:
    if isinstance(command, str) or not isinstance(command, (list, tuple)):
        raise PolicyError("command must be a sequence of strings")
    parsed = tuple(command)
    if not parsed:
        raise PolicyError("command must not be empty")
    for item in parsed:
        if not isinstance(item, str) or "\x00" in item:
            raise PolicyError("command arguments must be strings without NUL bytes")
    if not parsed[0]:
        raise PolicyError("command executable must not be empty")
    return parsed


__all__ = [
    "ExecutorInvocation",
    "LIFETIME_FLAGS",
    "compose",
    "mount_arguments",
    "resolve_command",
    "transcript_path",
    "wrap_with_transcript",
]
