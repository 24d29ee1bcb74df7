"""Resolved per-run policy and the read-only directory resolver."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from layered_sandbox.constants import (
    AUX_SOCKET_ENV,
    AUX_SOCKET_HOME_FALLBACK,
    AUX_SOCKET_RUNTIME_SUBDIR,
    POLICY_COMMENT_PREFIX,
    POLICY_FILE_NAME,
)
from layered_sandbox.sandbox.errors import PolicyError, PolicyFileError

logger = logging.getLogger(__name__)

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class NetworkMode(str, Enum):
    """Network namespace handling for the sandboxed process."""

    SHARED = "shared"
    ISOLATED = "isolated"


@dataclass(frozen=True, slots=True)
class Policy:
    """Resolved configuration for one sandboxed run."""

    home_root: Path
    work_root: Path
    sensitive_protection_enabled: bool = True
    env_protection_enabled: bool = False
    ro_directories: tuple[Path, ...] = ()
    network_mode: NetworkMode = NetworkMode.SHARED
    auxiliary_mount: Path | None = None
    extra_env: Mapping[str, str] = field(default_factory=dict)
    tool_config_glob: str | None = None

    def __post_init__(self) -> None:
        home_root = _require_absolute(self.home_root, "home_root")
        work_root = _require_absolute(self.work_root, "work_root")
        object.__setattr__(self, "home_root", home_root)
        object.__setattr__(self, "work_root", work_root)
        object.__setattr__(self, "network_mode", NetworkMode(self.network_mode))

        unique: list[Path] = []
        for raw in self.ro_directories:
            directory = _require_absolute(raw, "ro_directories entry")
            if not _is_relative_to(directory, work_root):
                raise PolicyError(
                    f"read-only directory {directory} is outside working directory {work_root}"
                )
            if directory not in unique:
                unique.append(directory)
        object.__setattr__(self, "ro_directories", tuple(unique))

        if self.auxiliary_mount is not None:
            object.__setattr__(
                self,
                "auxiliary_mount",
                _require_absolute(self.auxiliary_mount, "auxiliary_mount"),
            )

        env: dict[str, str] = {}
        for name, value in self.extra_env.items():
            if not isinstance(name, str) or not _ENV_NAME_PATTERN.fullmatch(name):
                raise PolicyError(f"invalid environment variable name: {name!r}")
            if not isinstance(value, str) or "\x00" in value:
                raise PolicyError(f"environment variable {name} must be a string without NUL")
            env[name] = value
        object.__setattr__(self, "extra_env", env)

        glob = self.tool_config_glob
        if glob is not None:
            glob = glob.strip()
            if "/" in glob:
                raise PolicyError("tool_config_glob must be a home-relative base-name glob")
            object.__setattr__(self, "tool_config_glob", glob or None)


@dataclass(frozen=True, slots=True)
class ResolutionIssue:
    """A declared read-only directory that was dropped."""

    entry: str
    source: str
    reason: str
    path: Path | None = None

    def describe(self) -> str:
        target = f" ({self.path})" if self.path is not None else ""
        return f"{self.entry!r} from {self.source}{target}: {self.reason}"


@dataclass(frozen=True, slots=True)
class RoResolution:
    """Outcome of merging file and CLI read-only declarations."""

    directories: tuple[Path, ...]
    issues: tuple[ResolutionIssue, ...] = ()


def parse_policy_lines(text: str) -> tuple[str, ...]:
    """Return the non-empty, non-comment lines of a policy file."""

    entries: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(POLICY_COMMENT_PREFIX):
            continue
        entries.append(stripped)
    return tuple(entries)


def read_policy_file(work_root: Path | str) -> tuple[str, ...]:
    """Read ``.sandbox-readonly`` from the working directory.

    An absent file yields no entries. Any other read failure is fatal.
    """

    path = Path(work_root) / POLICY_FILE_NAME
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ()
    except OSError as exc:
        raise PolicyFileError(f"unable to read policy file {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise PolicyFileError(f"policy file {path} is not valid UTF-8: {exc}") from exc
    entries = parse_policy_lines(text)
    logger.debug("read %d entries from %s", len(entries), path)
    return entries


def resolve_ro_directories(
    cli_ro_dirs: Sequence[str],
    policy_file_lines: Sequence[str],
    work_root: Path | str,
) -> RoResolution:
    """Merge file and CLI declarations into deduplicated absolute directories.

    Policy file entries come first, then command-line entries, each kept at
    its first occurrence.
    """

    root = Path(work_root)
    real_root = root.resolve()
    directories: list[Path] = []
    issues: list[ResolutionIssue] = []

    declared = [(entry, POLICY_FILE_NAME) for entry in policy_file_lines]
    declared.extend((entry, "command line") for entry in cli_ro_dirs)

    for entry, source in declared:
        raw = entry.strip()
        if not raw:
            issues.append(ResolutionIssue(entry=entry, source=source, reason="empty entry"))
            continue
        candidate = Path(os.path.expanduser(raw))
        if not candidate.is_absolute():
            candidate = root / candidate
        resolved = candidate.resolve()

        if not _is_relative_to(resolved, real_root):
            issues.append(
                ResolutionIssue(
                    entry=raw, source=source, reason="outside working directory", path=resolved
                )
            )
            continue
        if not resolved.exists():
            issues.append(
                ResolutionIssue(entry=raw, source=source, reason="does not exist", path=resolved)
            )
            continue
        if not resolved.is_dir():
            issues.append(
                ResolutionIssue(
                    entry=raw, source=source, reason="is not a directory", path=resolved
                )
            )
            continue
        if resolved not in directories:
            directories.append(resolved)

    for issue in issues:
        logger.warning("dropping read-only directory %s", issue.describe())
    return RoResolution(directories=tuple(directories), issues=tuple(issues))


def resolve_auxiliary_mount(
    home_root: Path,
    *,
    configured: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """Pick the agent-browser control socket directory.

    Precedence: explicit config, ``AGENT_BROWSER_SOCKET_DIR``,
    ``$XDG_RUNTIME_DIR/agent-browser``, then ``~/.agent-browser``.
    """

    env = os.environ if environ is None else environ
    if configured:
        return Path(os.path.expanduser(configured)).absolute()
    explicit = env.get(AUX_SOCKET_ENV, "").strip()
    if explicit:
        return Path(explicit).absolute()
    runtime_dir = env.get("XDG_RUNTIME_DIR", "").strip()
    if runtime_dir:
        return Path(runtime_dir) / AUX_SOCKET_RUNTIME_SUBDIR
    return home_root / AUX_SOCKET_HOME_FALLBACK


def build_policy(
    config: Mapping[str, Any],
    *,
    home_root: Path,
    work_root: Path,
    cli_ro_dirs: Sequence[str] = (),
    policy_file_lines: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> tuple[Policy, RoResolution]:
    """Assemble a :class:`Policy` from the effective config and declarations."""

    protection = _section(config, "protection")
    network = _section(config, "network")
    run = _section(config, "run")
    auxiliary = _section(config, "auxiliary")
    extra_env = _section(config, "env")
    home_root = Path(home_root).resolve()
    work_root = Path(work_root).resolve()

    lines = read_policy_file(work_root) if policy_file_lines is None else policy_file_lines
    resolution = resolve_ro_directories(cli_ro_dirs, lines, work_root)

    auxiliary_mount: Path | None = None
    if bool(auxiliary.get("enabled", False)):
        configured = auxiliary.get("path")
        auxiliary_mount = resolve_auxiliary_mount(
            home_root,
            configured=configured if isinstance(configured, str) else None,
            environ=environ,
        )

    glob = run.get("tool_config_glob")
    policy = Policy(
        home_root=home_root,
        work_root=work_root,
        sensitive_protection_enabled=bool(protection.get("sensitive", True)),
        env_protection_enabled=bool(protection.get("env", False)),
        ro_directories=resolution.directories,
        network_mode=NetworkMode(str(network.get("mode", NetworkMode.SHARED.value))),
        auxiliary_mount=auxiliary_mount,
        extra_env={str(key): str(value) for key, value in extra_env.items()},
        tool_config_glob=glob if isinstance(glob, str) else None,
    )
    return policy, resolution


def _section(config: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = config.get(key)
    return value if isinstance(value, Mapping) else {}


def _require_absolute(value: Path | str, field_name: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        raise PolicyError(f"{field_name} must be an absolute path: {value}")
    return Path(os.path.normpath(path))


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = [
    "NetworkMode",
    "Policy",
    "ResolutionIssue",
    "RoResolution",
    "build_policy",
    "parse_policy_lines",
    "read_policy_file",
    "resolve_auxiliary_mount",
    "resolve_ro_directories",
]
