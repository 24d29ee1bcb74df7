"""Output rendering for the layered-sandbox CLI.

File: src/layered_sandbox/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for the launch banner and the
  per-phase layer report.
- Keep banner output off stdout when a command runs, so the sandboxed
  program owns its standard output.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- All public methods must be safe to call in any environment.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

from layered_sandbox.sandbox.layers import MountKind, Phase
from layered_sandbox.sandbox.policy import NetworkMode

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from layered_sandbox.sandbox.executor import ExecutorInvocation
    from layered_sandbox.sandbox.layers import LayerPlan
    from layered_sandbox.sandbox.policy import Policy, RoResolution

SEPARATOR = "-" * 39

_PHASE_TITLES: dict[Phase, str] = {
    Phase.HOME_SENSITIVE: "Protected Sensitive Paths:",
    Phase.CONFIG_UNLOCK: "Unlocking Configs:",
    Phase.WORKDIR_UNLOCK: "Unlocking Work Dir:",
    Phase.WORKDIR_SENSITIVE: "Protected Sensitive Files in Work Dir:",
    Phase.ENV_BLOCK: "Protected .env Files in Work Dir:",
    Phase.RO_DIRECTORIES: "Read-Only Directories in Work Dir:",
    Phase.AUXILIARY: "Unlocking Agent-Browser:",
}

_KIND_TAGS: dict[MountKind, str] = {
    MountKind.RO_BIND: "RO",
    MountKind.RW_BIND: "RW",
    MountKind.OPAQUE_MASK: "BLOCKED",
    MountKind.NULL_FILE_MASK: "BLOCKED",
}


class CLIRenderer:
    """Thin CLI output renderer writing deterministic plain text to one stream."""

    def __init__(self, *, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def heading(self, text: str) -> None:
        """Print a heading line."""

        self._write(text)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._write(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._write(line)

    def rule(self) -> None:
        self._write(SEPARATOR)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._write(f"\n{title}")

    def warning(self, text: str) -> None:
        """Print a warning message."""

        self._write(f"Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print an indented bulleted list."""

        for entry in entries:
            self._write(f"   {prefix}{entry}")

    def _write(self, line: str) -> None:
        print(line, file=self.stream)


def create_renderer(*, stream: TextIO | None = None) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(stream=stream)


def render_banner(
    renderer: CLIRenderer,
    policy: Policy,
    *,
    transcript: bool,
    autonomous: bool | None = None,
) -> None:
    """Print the launch banner describing every protection toggle.

    ``autonomous`` is ``None`` when the command carries no permission mode.
    """

    renderer.heading("SANDBOX (BUBBLEWRAP)")
    if autonomous is not None:
        mode = "SKIP (autonomous arguments)" if autonomous else "SAFE (will prompt for permissions)"
        renderer.kv("Permission Mode", mode)
    if policy.sensitive_protection_enabled:
        renderer.kv("Sensitive Protection", "ENABLED")
    else:
        renderer.warning("Sensitive Protection: DISABLED (--include-sensitive)")
    if transcript:
        renderer.kv("Session Logging", "ENABLED (--log)")
    if policy.env_protection_enabled:
        renderer.kv("Env Protection", "ENABLED (--protect-env)")
    if policy.network_mode is NetworkMode.ISOLATED:
        renderer.kv("Network Access", "DISABLED (--no-network)")
    else:
        renderer.kv("Network Access", "ENABLED")
    if policy.auxiliary_mount is not None:
        renderer.kv("Agent-Browser", "ENABLED (--aux-mount)")
    if policy.extra_env:
        renderer.kv("Environment", ", ".join(sorted(policy.extra_env)))
    renderer.rule()


def render_resolution(renderer: CLIRenderer, resolution: RoResolution) -> None:
    for issue in resolution.issues:
        renderer.warning(f"ignoring read-only directory {issue.describe()}")


def render_plan_report(renderer: CLIRenderer, plan: LayerPlan) -> None:
    """Per-phase listing of masked, unlocked and read-only paths."""

    by_phase: dict[Phase, list[str]] = {}
    for operation in plan:
        if operation.reapplied or operation.phase not in _PHASE_TITLES:
            continue
        tag = _KIND_TAGS.get(operation.kind)
        if tag is None:
            continue
        by_phase.setdefault(operation.phase, []).append(f"[{tag}] {operation.target}")

    for phase, title in _PHASE_TITLES.items():
        lines = by_phase.get(phase)
        if lines:
            renderer.text(title)
            renderer.items(lines, prefix="")
        for issue in plan.issues:
            if issue.phase is phase:
                renderer.warning(issue.describe())
    renderer.rule()


def render_invocation(renderer: CLIRenderer, invocation: ExecutorInvocation) -> None:
    renderer.section("Executor invocation:")
    renderer.items(list(invocation.argv), prefix="")


def render_session_end(renderer: CLIRenderer, transcript: Path | None) -> None:
    renderer.rule()
    if transcript is not None:
        renderer.text(f"Session finished. Log saved to: {transcript}")
    else:
        renderer.text("Session finished.")


__all__ = [
    "CLIRenderer",
    "SEPARATOR",
    "create_renderer",
    "render_banner",
    "render_invocation",
    "render_plan_report",
    "render_resolution",
    "render_session_end",
]
