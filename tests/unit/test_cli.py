"""Unit tests for the layered-sandbox command-line launcher."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from layered_sandbox.sandbox.errors import ExecutorNotFoundError
from layered_sandbox.sandbox.executor import ExecutorInvocation
from layered_sandbox.sandbox.sandbox_manager import SandboxRunResult
from layered_sandbox.ui.cli import build_parser, run_cli


class _FakeManager:
    def __init__(self, returncode: int = 0, error: Exception | None = None) -> None:
        self.returncode = returncode
        self.error = error
        self.calls: list[tuple[ExecutorInvocation, Path | None, Path | None]] = []

    def run(
        self,
        invocation: ExecutorInvocation,
        *,
        transcript: Path | None = None,
        cwd: Path | None = None,
    ) -> SandboxRunResult:
        self.calls.append((invocation, transcript, cwd))
        if self.error is not None:
            raise self.error
        return SandboxRunResult(
            argv=invocation.argv,
            returncode=self.returncode,
            duration_ms=0.0,
            transcript=transcript,
        )


@pytest.fixture()
def roots(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> tuple[Path, Path]:
    home = tmp_path / "home"
    work = tmp_path / "work"
    home.mkdir()
    work.mkdir()
    for name in list(os.environ):
        if name.startswith("LAYERED_SANDBOX_") or name in {
            "AGENT_BROWSER_SOCKET_DIR",
            "XDG_RUNTIME_DIR",
        }:
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("SHELL", "/bin/sh")
    monkeypatch.chdir(work)
    return home.resolve(), work.resolve()


def _dry_run_json(capsys: pytest.CaptureFixture[str], *argv: str) -> dict[str, object]:
    exit_code = run_cli(["--dry-run", "--json", *argv])
    captured = capsys.readouterr()
    assert exit_code == 0, captured.err
    payload = json.loads(captured.out)
    assert isinstance(payload, dict)
    return payload


def test_parser_collects_repeatable_flags_and_trailing_command() -> None:
    args = build_parser().parse_args(
        ["-R", "dist", "--ro-dir", "vendor", "--setenv", "A=1", "-n", "make", "-j4"]
    )

    assert args.ro_dirs == ["dist", "vendor"]
    assert args.setenv == ["A=1"]
    assert args.no_network is True
    assert args.command == ["make", "-j4"]


def test_dry_run_json_reports_compiled_plan(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    home, work = roots
    (home / ".ssh").mkdir()
    (work / "vendor").mkdir()
    (work / ".sandbox-readonly").write_text("vendor\nmissing\n", encoding="utf-8")

    payload = _dry_run_json(capsys, "--", "make", "test")

    policy = payload["policy"]
    assert isinstance(policy, dict)
    assert policy["home_root"] == str(home)
    assert policy["work_root"] == str(work)
    assert policy["ro_directories"] == [str(work / "vendor")]
    assert payload["read_only_issues"] == [
        f"'missing' from .sandbox-readonly ({work / 'missing'}): does not exist"
    ]
    layers = payload["layers"]
    assert isinstance(layers, dict)
    assert layers["phases"]["home_sensitive"] == [str(home / ".ssh")]  # type: ignore[index]
    invocation = payload["invocation"]
    assert isinstance(invocation, dict)
    assert invocation["command"] == ["make", "test"]
    assert invocation["argv"][0] == "bwrap"  # type: ignore[index]
    assert invocation["argv"][-4:] == [  # type: ignore[index]
        "--new-session",
        "--die-with-parent",
        "make",
        "test",
    ]


def test_dry_run_flags_map_onto_policy(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    _home, work = roots
    (work / "dist").mkdir()

    payload = _dry_run_json(
        capsys, "-s", "-e", "-n", "-R", "dist", "--setenv", "FOO=bar", "true"
    )

    policy = payload["policy"]
    assert isinstance(policy, dict)
    assert policy["sensitive_protection"] is False
    assert policy["env_protection"] is True
    assert policy["network_mode"] == "isolated"
    assert policy["ro_directories"] == [str(work / "dist")]
    assert policy["env"] == ["FOO"]
    argv = payload["invocation"]["argv"]  # type: ignore[index]
    assert "--unshare-net" in argv
    assert argv[argv.index("--setenv") : argv.index("--setenv") + 3] == ["--setenv", "FOO", "bar"]


def test_dry_run_without_command_uses_shell(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    payload = _dry_run_json(capsys)

    assert payload["invocation"]["command"] == ["/bin/sh"]  # type: ignore[index]


def test_agent_profile_runs_autonomously_unless_safe_mode(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    home, _work = roots
    (home / ".claude").mkdir()

    autonomous = _dry_run_json(capsys, "--profile", "agent", "--", "--resume")
    safe = _dry_run_json(capsys, "--profile", "agent", "-p")

    assert autonomous["invocation"]["command"] == [  # type: ignore[index]
        "claude",
        "--dangerously-skip-permissions",
        "--resume",
    ]
    assert safe["invocation"]["command"] == ["claude"]  # type: ignore[index]
    assert autonomous["policy"]["env"] == [  # type: ignore[index]
        "CLAUDE_CODE_EXPERIMENTAL_AGENT_TEAMS"
    ]
    assert autonomous["layers"]["phases"]["config_unlock"] == [  # type: ignore[index]
        str(home / ".claude")
    ]


def test_no_default_env_keeps_only_command_line_variables(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    without_any = _dry_run_json(capsys, "--profile", "agent", "--no-default-env")
    only_cli = _dry_run_json(
        capsys, "--profile", "agent", "--no-default-env", "--setenv", "ONLY=1"
    )

    assert without_any["policy"]["env"] == []  # type: ignore[index]
    assert only_cli["policy"]["env"] == ["ONLY"]  # type: ignore[index]


def test_dry_run_text_output_shows_banner_and_argv(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = run_cli(["--dry-run", "-s", "-n", "echo", "hi"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert out.startswith("SANDBOX (BUBBLEWRAP)\n")
    assert "Warning: Sensitive Protection: DISABLED (--include-sensitive)" in out
    assert "Network Access: DISABLED (--no-network)" in out
    assert "Executor invocation:" in out


def test_json_requires_dry_run(roots: tuple[Path, Path]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        run_cli(["--json", "true"])

    assert excinfo.value.code == 2


def test_malformed_setenv_is_a_config_error(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = run_cli(["--dry-run", "--setenv", "NOVALUE", "true"])

    assert exit_code == 2
    assert "--setenv expects NAME=VALUE" in capsys.readouterr().err


def test_invalid_environment_name_is_a_config_error(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = run_cli(["--dry-run", "--setenv", "1BAD=x", "true"])

    assert exit_code == 2
    assert "env.1BAD" in capsys.readouterr().err


def test_missing_config_file_is_a_config_error(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    exit_code = run_cli(["--dry-run", "--config", str(tmp_path / "absent.toml"), "true"])

    assert exit_code == 2
    assert "config file not found" in capsys.readouterr().err


def test_unreadable_policy_file_is_a_config_error(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    _home, work = roots
    (work / ".sandbox-readonly").mkdir()

    exit_code = run_cli(["--dry-run", "true"])

    assert exit_code == 2
    assert ".sandbox-readonly" in capsys.readouterr().err


def test_config_file_is_read_from_xdg_location(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    config_file = tmp_path / "xdg" / "layered-sandbox" / "config.toml"
    config_file.parent.mkdir(parents=True)
    config_file.write_text('[network]\nmode = "isolated"\n', encoding="utf-8")

    payload = _dry_run_json(capsys, "true")

    assert payload["policy"]["network_mode"] == "isolated"  # type: ignore[index]


def test_run_passes_child_exit_code_through(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    _home, work = roots
    manager = _FakeManager(returncode=42)

    exit_code = run_cli(["--", "false"], manager=manager)  # type: ignore[arg-type]

    captured = capsys.readouterr()
    assert exit_code == 42
    assert captured.out == ""
    assert "SANDBOX (BUBBLEWRAP)" in captured.err
    assert "Session finished." in captured.err
    ((invocation, transcript, cwd),) = manager.calls
    assert invocation.command == ("false",)
    assert transcript is None
    assert cwd == work


def test_run_with_transcript_names_log_in_work_root(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    _home, work = roots
    manager = _FakeManager()

    exit_code = run_cli(["-l", "true"], manager=manager)  # type: ignore[arg-type]

    assert exit_code == 0
    ((_invocation, transcript, _cwd),) = manager.calls
    assert transcript is not None
    assert transcript.parent == work
    assert transcript.name.startswith("sandbox_session_")
    assert transcript.suffix == ".log"
    assert f"Log saved to: {transcript}" in capsys.readouterr().err


def test_interactive_shell_prints_start_message(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    run_cli([], manager=_FakeManager())  # type: ignore[arg-type]

    assert "Starting sandboxed shell: /bin/sh" in capsys.readouterr().err


def test_missing_executor_is_reported_with_exit_three(
    roots: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    manager = _FakeManager(error=ExecutorNotFoundError("bwrap is not installed or not on PATH"))

    exit_code = run_cli(["true"], manager=manager)  # type: ignore[arg-type]

    assert exit_code == 3
    assert "error: bwrap is not installed" in capsys.readouterr().err
