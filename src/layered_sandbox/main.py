"""Executable CLI entrypoint for ``layered_sandbox``."""

from __future__ import annotations

import signal
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Launcher exit-code contract.

    Codes produced by the launcher itself. When the sandboxed command runs,
    its own exit status is returned unchanged instead.
    """

    SUCCESS = 0
    CONFIG_ERROR = 2
    EXECUTOR_ERROR = 3
    INTERNAL_ERROR = 4


INTERRUPTED_EXIT: int = 128 + signal.SIGINT


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m layered_sandbox`` and script shims."""

    try:
        from layered_sandbox.ui.cli import run_cli

        return _as_process_status(run_cli(argv))
    except SystemExit as exc:
        return _as_process_status(exc.code)
    except KeyboardInterrupt:
        return INTERRUPTED_EXIT
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _classify(exc)
        if exit_code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _write_stderr(f"error: {str(exc).strip() or type(exc).__name__}")
        return int(exit_code)


def _as_process_status(raw_code: object) -> int:
    """Pass statuses 0..255 through; anything else is an internal error."""

    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and 0 <= raw_code <= 255:
        return int(raw_code)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from layered_sandbox.config.loader import ConfigLoadError
    from layered_sandbox.config.schema import ConfigValidationError
    from layered_sandbox.sandbox.errors import ExecutorError, PolicyError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((ExecutorError,), ExitCode.EXECUTOR_ERROR),
        ((ConfigLoadError, ConfigValidationError, PolicyError), ExitCode.CONFIG_ERROR),
    )
    for item in _causes(exc):
        for error_types, code in routes:
            if isinstance(item, error_types):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Yield ``exc`` and its explicit or implicit causes, outermost first."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["INTERRUPTED_EXIT", "ExitCode", "cli_entrypoint"]
