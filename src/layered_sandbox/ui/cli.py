"""Command-line interface for layered-sandbox."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from layered_sandbox import __version__
from layered_sandbox.config import (
    ConfigLoadError,
    ConfigValidationError,
    load_config,
    redact_config,
)
from layered_sandbox.observability import correlation_scope, setup_logging, shutdown_logging
from layered_sandbox.sandbox.errors import ExecutorError, PolicyError
from layered_sandbox.sandbox.executor import (
    ExecutorInvocation,
    compose,
    resolve_command,
    transcript_path,
)
from layered_sandbox.sandbox.layers import LayerBuilder, LayerPlan
from layered_sandbox.sandbox.policy import Policy, RoResolution, build_policy
from layered_sandbox.sandbox.sandbox_manager import SandboxManager
from layered_sandbox.ui.render import (
    CLIRenderer,
    create_renderer,
    render_banner,
    render_invocation,
    render_plan_report,
    render_resolution,
    render_session_end,
)

logger = logging.getLogger(__name__)

LOG_LEVEL_CHOICES: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class LaunchPlan:
    """Everything compiled for one run, before the executor is started."""

    config: Mapping[str, Any]
    policy: Policy
    resolution: RoResolution
    plan: LayerPlan
    invocation: ExecutorInvocation
    autonomous: bool | None
    transcript: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "policy": _policy_payload(self.policy),
            "read_only_issues": [issue.describe() for issue in self.resolution.issues],
            "layers": self.plan.to_dict(),
            "invocation": self.invocation.to_dict(),
            "transcript": self.transcript,
            "config": redact_config(self.config),
        }


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the sandbox launcher."""

    parser = argparse.ArgumentParser(
        prog="layered-sandbox",
        description=(
            "Run a command inside a bubblewrap sandbox: the filesystem is read-only,\n"
            "the working directory is writable, and credentials are hidden.\n\n"
            "Examples:\n"
            "  layered-sandbox                     Interactive $SHELL in the sandbox\n"
            "  layered-sandbox -n -- make test     Run tests without network access\n"
            "  layered-sandbox --profile agent -l  Run the coding agent with a transcript\n"
            "  layered-sandbox --dry-run --json    Show the compiled mount plan\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-s",
        "--include-sensitive",
        action="store_true",
        default=False,
        help="Disable sensitive path protection (credentials become visible).",
    )
    parser.add_argument(
        "-e",
        "--protect-env",
        action="store_true",
        default=False,
        help="Hide .env* files in the working directory.",
    )
    parser.add_argument(
        "-n",
        "--no-network",
        action="store_true",
        default=False,
        help="Run without network access.",
    )
    parser.add_argument(
        "-l",
        "--log",
        action="store_true",
        default=False,
        help="Record the session transcript to <prefix>_session_<timestamp>.log.",
    )
    parser.add_argument(
        "-R",
        "--ro-dir",
        dest="ro_dirs",
        action="append",
        default=[],
        metavar="DIR",
        help="Keep DIR (inside the working directory) read-only. Repeatable.",
    )
    parser.add_argument(
        "-b",
        "--aux-mount",
        action="store_true",
        default=False,
        help="Unlock the agent-browser control socket directory.",
    )
    parser.add_argument(
        "--setenv",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set an environment variable inside the sandbox. Repeatable.",
    )
    parser.add_argument(
        "--no-default-env",
        action="store_true",
        default=False,
        help="Drop environment variables provided by config or profile.",
    )
    parser.add_argument(
        "-p",
        "--safe-mode",
        action="store_true",
        default=False,
        help="Omit the profile's autonomous arguments so the agent asks for permission.",
    )
    parser.add_argument("--profile", default=None, help="Config profile overlay name.")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to config TOML (default: $XDG_CONFIG_HOME/layered-sandbox/config.toml).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Print the compiled plan and executor argv without running anything.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="With --dry-run, emit deterministic JSON output.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        type=str.upper,
        choices=LOG_LEVEL_CHOICES,
        help="Diagnostic log level (default: from config, WARNING).",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run; defaults to the profile command or $SHELL.",
    )
    return parser


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None, *, manager: SandboxManager | None = None) -> int:
    """Parse argv, compile the sandbox and return the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    if namespace.json and not namespace.dry_run:
        parser.error("--json requires --dry-run")

    try:
        return _cmd_launch(namespace, manager=manager)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()


# ---------------------------------------------------------------------------
# Command handler
# ---------------------------------------------------------------------------


def _cmd_launch(args: argparse.Namespace, *, manager: SandboxManager | None) -> int:
    config = _load_effective_config(args)
    run_id = uuid.uuid4().hex[:12]
    try:
        setup_logging(config.get("observability"), run_id=run_id, level=args.log_level)
    except OSError as exc:
        raise CLIError(f"unable to open log file: {exc}", exit_code=2) from exc

    work_root = Path.cwd()
    command = _strip_separator(args.command)
    with correlation_scope(profile=args.profile, work_root=str(work_root)):
        launch = compile_launch(
            config,
            home_root=Path.home(),
            work_root=work_root,
            command=command,
            cli_ro_dirs=args.ro_dirs,
            safe_mode=args.safe_mode,
        )

        if args.dry_run:
            if args.json:
                _emit_json(launch.to_dict())
            else:
                renderer = create_renderer()
                _render_launch(renderer, launch)
                render_invocation(renderer, launch.invocation)
            return 0

        renderer = create_renderer(stream=sys.stderr)
        _render_launch(renderer, launch)
        if not command and not launch.config["run"]["default_command"]:
            renderer.text(f"Starting sandboxed shell: {launch.invocation.command[0]}")
            renderer.text("Type 'exit' to leave the sandbox.")
            renderer.rule()

        log_file = None
        if launch.transcript:
            log_file = transcript_path(
                launch.policy.work_root, str(launch.config["run"]["transcript_prefix"])
            )
        runner = manager if manager is not None else SandboxManager()
        try:
            result = runner.run(launch.invocation, transcript=log_file, cwd=launch.policy.work_root)
        except ExecutorError as exc:
            raise CLIError(str(exc), exit_code=3) from exc

        render_session_end(renderer, result.transcript)
        return result.exit_code


def compile_launch(
    config: Mapping[str, Any],
    *,
    home_root: Path,
    work_root: Path,
    command: Sequence[str] = (),
    cli_ro_dirs: Sequence[str] = (),
    safe_mode: bool = False,
    builder: LayerBuilder | None = None,
    environ: Mapping[str, str] | None = None,
) -> LaunchPlan:
    """Compile effective config and declarations into a ready-to-run invocation."""

    run = config["run"]
    try:
        policy, resolution = build_policy(
            config,
            home_root=home_root,
            work_root=work_root,
            cli_ro_dirs=cli_ro_dirs,
            environ=environ,
        )
        plan = (builder or LayerBuilder()).build(policy)
        resolved_command = resolve_command(
            command,
            default_command=run["default_command"],
            autonomous_args=run["autonomous_args"],
            safe_mode=safe_mode,
            environ=environ,
        )
        invocation = compose(plan, policy, resolved_command, executor=run["executor"])
    except PolicyError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    autonomous: bool | None = None
    if run["default_command"] and run["autonomous_args"]:
        autonomous = not safe_mode
    logger.debug("compiled %d mount operation(s)", len(plan))
    return LaunchPlan(
        config=config,
        policy=policy,
        resolution=resolution,
        plan=plan,
        invocation=invocation,
        autonomous=autonomous,
        transcript=bool(run["transcript"]),
    )


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _render_launch(renderer: CLIRenderer, launch: LaunchPlan) -> None:
    render_banner(
        renderer, launch.policy, transcript=launch.transcript, autonomous=launch.autonomous
    )
    render_resolution(renderer, launch.resolution)
    render_plan_report(renderer, launch.plan)


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _policy_payload(policy: Policy) -> dict[str, object]:
    return {
        "home_root": str(policy.home_root),
        "work_root": str(policy.work_root),
        "sensitive_protection": policy.sensitive_protection_enabled,
        "env_protection": policy.env_protection_enabled,
        "ro_directories": [str(path) for path in policy.ro_directories],
        "network_mode": policy.network_mode.value,
        "auxiliary_mount": None if policy.auxiliary_mount is None else str(policy.auxiliary_mount),
        "tool_config_glob": policy.tool_config_glob,
        "env": sorted(policy.extra_env),
    }


# ---------------------------------------------------------------------------
# Helpers: config and arguments
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    setenv = _parse_setenv(args.setenv)
    try:
        config = load_config(
            args.config_path,
            profile=args.profile,
            cli_overrides=_cli_overrides(args, setenv),
        )
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if args.no_default_env:
        config["env"] = setenv
    return config


def _cli_overrides(args: argparse.Namespace, setenv: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    if args.include_sensitive:
        overrides["protection.sensitive"] = False
    if args.protect_env:
        overrides["protection.env"] = True
    if args.no_network:
        overrides["network.mode"] = "isolated"
    if args.log:
        overrides["run.transcript"] = True
    if args.aux_mount:
        overrides["auxiliary.enabled"] = True
    if args.log_level is not None:
        overrides["observability.log_level"] = args.log_level
    if setenv:
        overrides["env"] = dict(setenv)
    return overrides


def _parse_setenv(entries: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for entry in entries:
        name, separator, value = entry.partition("=")
        if not separator or not name.strip():
            raise CLIError(f"--setenv expects NAME=VALUE, got {entry!r}", exit_code=2)
        parsed[name.strip()] = value
    return parsed


def _strip_separator(command: Sequence[str]) -> list[str]:
    items = list(command)
    if items and items[0] == "--":
        return items[1:]
    return items


__all__ = [
    "CLIError",
    "LaunchPlan",
    "build_parser",
    "compile_launch",
    "run_cli",
]
