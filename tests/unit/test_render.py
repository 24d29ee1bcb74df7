"""Unit tests for the plain-text banner and layer report."""

from __future__ import annotations

import io
from pathlib import Path

from layered_sandbox.sandbox.layers import LayerBuilder
from layered_sandbox.sandbox.policy import NetworkMode, Policy
from layered_sandbox.ui.render import (
    SEPARATOR,
    CLIRenderer,
    create_renderer,
    render_banner,
    render_plan_report,
    render_session_end,
)


def _renderer() -> tuple[CLIRenderer, io.StringIO]:
    stream = io.StringIO()
    return CLIRenderer(stream=stream), stream


def test_banner_lists_enabled_protections() -> None:
    renderer, stream = _renderer()
    policy = Policy(
        home_root=Path("/home/u"),
        work_root=Path("/home/u/project"),
        env_protection_enabled=True,
        network_mode=NetworkMode.ISOLATED,
        auxiliary_mount=Path("/run/user/1000/agent-browser"),
        extra_env={"API_TOKEN": "secret-value", "FEATURE": "1"},
    )

    render_banner(renderer, policy, transcript=True, autonomous=False)

    assert stream.getvalue().splitlines() == [
        "SANDBOX (BUBBLEWRAP)",
        "Permission Mode: SAFE (will prompt for permissions)",
        "Sensitive Protection: ENABLED",
        "Session Logging: ENABLED (--log)",
        "Env Protection: ENABLED (--protect-env)",
        "Network Access: DISABLED (--no-network)",
        "Agent-Browser: ENABLED (--aux-mount)",
        "Environment: API_TOKEN, FEATURE",
        SEPARATOR,
    ]
    assert "secret-value" not in stream.getvalue()


def test_banner_warns_when_sensitive_protection_is_disabled() -> None:
    renderer, stream = _renderer()
    policy = Policy(
        home_root=Path("/home/u"),
        work_root=Path("/home/u/project"),
        sensitive_protection_enabled=False,
    )

    render_banner(renderer, policy, transcript=False)

    lines = stream.getvalue().splitlines()
    assert "Warning: Sensitive Protection: DISABLED (--include-sensitive)" in lines
    assert "Network Access: ENABLED" in lines
    assert not any(line.startswith("Permission Mode") for line in lines)


def test_plan_report_groups_operations_by_phase(tmp_path: Path) -> None:
    home = tmp_path / "home"
    work = tmp_path / "work"
    (home / ".ssh").mkdir(parents=True)
    (work / "vendor" / "tls").mkdir(parents=True)
    (work / "vendor" / "tls" / "ca.pem").write_text("x", encoding="utf-8")
    policy = Policy(
        home_root=home.resolve(),
        work_root=work.resolve(),
        ro_directories=(work.resolve() / "vendor",),
    )
    plan = LayerBuilder(dev_pts=False).build(policy)
    renderer, stream = _renderer()

    render_plan_report(renderer, plan)

    lines = stream.getvalue().splitlines()
    ca = work.resolve() / "vendor" / "tls" / "ca.pem"
    assert lines[:2] == ["Protected Sensitive Paths:", f"   [BLOCKED] {(home / '.ssh').resolve()}"]
    assert "Unlocking Work Dir:" in lines
    assert f"   [BLOCKED] {ca}" in lines
    assert lines.count(f"   [BLOCKED] {ca}") == 1
    assert f"   [RO] {work.resolve() / 'vendor'}" in lines
    assert lines[-1] == SEPARATOR


def test_session_end_names_the_transcript(tmp_path: Path) -> None:
    renderer, stream = _renderer()

    render_session_end(renderer, tmp_path / "claude_session.log")
    render_session_end(renderer, None)

    lines = stream.getvalue().splitlines()
    assert lines[1] == f"Session finished. Log saved to: {tmp_path / 'claude_session.log'}"
    assert lines[3] == "Session finished."


def test_create_renderer_writes_to_the_given_stream() -> None:
    stream = io.StringIO()
    renderer = create_renderer(stream=stream)

    renderer.warning("socket directory missing")

    assert stream.getvalue() == "Warning: socket directory missing\n"
