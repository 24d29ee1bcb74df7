"""Executor handoff: locate binaries, spawn, forward signals, propagate exit codes."""

from __future__ import annotations

import logging
import shutil
import signal
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from layered_sandbox.constants import TRANSCRIPT_BINARY
from layered_sandbox.sandbox.errors import ExecutorError, ExecutorNotFoundError
from layered_sandbox.sandbox.executor import ExecutorInvocation, wrap_with_transcript

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

FORWARDED_SIGNALS: tuple[signal.Signals, ...] = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGHUP,
    signal.SIGQUIT,
)

_INSTALL_HINTS: dict[str, str] = {
    "bwrap": (
        "install bubblewrap (Debian/Ubuntu: apt install bubblewrap, "
        "Fedora: dnf install bubblewrap, Arch: pacman -S bubblewrap)"
    ),
    "script": "install util-linux to enable session logging",
}

Which = Callable[[str], str | None]
Spawner = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class SandboxRunResult:
    """Outcome of one executor run."""

    argv: tuple[str, ...]
    returncode: int
    duration_ms: float
    transcript: Path | None = None

    @property
    def exit_code(self) -> int:
        """Shell-style exit status; signal deaths map to ``128 + signum``."""

        if self.returncode < 0:
            return 128 + (-self.returncode)
        return self.returncode

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class SandboxManager:
    """Run a composed invocation in the foreground and wait for it."""

    def __init__(
        self,
        *,
        which: Which = shutil.which,
        spawner: Spawner = subprocess.Popen,
        forwarded_signals: Sequence[signal.Signals] = FORWARDED_SIGNALS,
        recorder: str = TRANSCRIPT_BINARY,
    ) -> None:
        self._which = which
        self._spawner = spawner
        self._forwarded_signals = tuple(forwarded_signals)
        self._recorder = recorder

    def locate(self, binary: str) -> str:
        """Return the absolute path of ``binary`` or raise ``ExecutorNotFoundError``."""

        found = self._which(binary)
        if not found:
            message = f"{binary} is not installed or not on PATH"
            hint = _INSTALL_HINTS.get(Path(binary).name)
            if hint:
                message = f"{message}; {hint}"
            raise ExecutorNotFoundError(message)
        return found

    def prepare(
        self,
        invocation: ExecutorInvocation,
        *,
        transcript: Path | None = None,
    ) -> tuple[str, ...]:
        """Resolve binaries and return the final argv, checking everything up front."""

        executor_path = self.locate(invocation.executable)
        resolved = ExecutorInvocation(
            argv=(executor_path, *invocation.argv[1:]),
            command=invocation.command,
            network_mode=invocation.network_mode,
            env=invocation.env,
        )
        if transcript is None:
            return resolved.argv
        recorder_path = self.locate(self._recorder)
        return wrap_with_transcript(resolved, transcript, recorder=recorder_path)

    def run(
        self,
        invocation: ExecutorInvocation,
        *,
        transcript: Path | None = None,
        cwd: Path | None = None,
    ) -> SandboxRunResult:
        argv = self.prepare(invocation, transcript=transcript)
        logger.info("starting executor", extra={"argv": list(argv)})

        started = time.perf_counter()
        try:
            process = self._spawner(list(argv), cwd=cwd)
        except OSError as exc:
            raise ExecutorError(f"failed to start {argv[0]}: {exc}") from exc

        with _SignalRelay(process, self._forwarded_signals):
            returncode = process.wait()

        duration_ms = (time.perf_counter() - started) * 1000.0
        result = SandboxRunResult(
            argv=argv,
            returncode=int(returncode),
            duration_ms=duration_ms,
            transcript=transcript,
        )
        logger.info(
            "executor finished",
            extra={"returncode": result.returncode, "duration_ms": round(duration_ms, 3)},
        )
        return result


class _SignalRelay:
    """Relay launcher signals to the child while it runs; restore handlers after."""

    def __init__(self, process: Any, signals: tuple[signal.Signals, ...]) -> None:
        self._process = process
        self._signals = signals
        self._previous: dict[signal.Signals, Any] = {}

    def __enter__(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in self._signals:
            self._previous[signum] = signal.signal(signum, self._relay)

    def __exit__(self, *exc_info: object) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _relay(self, signum: int, _frame: object) -> None:
        if self._process.poll() is None:
            logger.debug("forwarding signal %d to executor", signum)
            self._process.send_signal(signum)


__all__ = [
    "FORWARDED_SIGNALS",
    "SandboxManager",
    "SandboxRunResult",
]
