"""Stable constants shared across the policy compiler and launcher."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema version for the operator TOML config.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Declarative read-only directory list, looked up inside the working directory.
POLICY_FILE_NAME: Final[str] = ".sandbox-readonly"
POLICY_COMMENT_PREFIX: Final[str] = "#"

# Bounded scan depths, counted like ``find -maxdepth`` (``root/x`` is depth 1).
HOME_SCAN_DEPTH: Final[int] = 2
WORK_SCAN_DEPTH: Final[int] = 3

# Fixed pseudo-filesystem paths used by the base layer.
ROOT_PATH: Final[PurePosixPath] = PurePosixPath("/")
DEV_PATH: Final[PurePosixPath] = PurePosixPath("/dev")
DEV_PTS_PATH: Final[PurePosixPath] = PurePosixPath("/dev/pts")
PROC_PATH: Final[PurePosixPath] = PurePosixPath("/proc")
TMP_PATH: Final[PurePosixPath] = PurePosixPath("/tmp")
NULL_DEVICE: Final[PurePosixPath] = PurePosixPath("/dev/null")

# External binaries.
DEFAULT_EXECUTOR: Final[str] = "bwrap"
TRANSCRIPT_BINARY: Final[str] = "script"
DEFAULT_SHELL: Final[str] = "/bin/bash"

# Session transcript naming: ``<prefix>_session_YYYY-MM-DD_HH-MM-SS.log``.
DEFAULT_TRANSCRIPT_PREFIX: Final[str] = "sandbox"
TRANSCRIPT_TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%d_%H-%M-%S"

# Agent-browser control socket directory resolution.
AUX_SOCKET_ENV: Final[str] = "AGENT_BROWSER_SOCKET_DIR"
AUX_SOCKET_RUNTIME_SUBDIR: Final[str] = "agent-browser"
AUX_SOCKET_HOME_FALLBACK: Final[str] = ".agent-browser"

__all__ = [
    "AUX_SOCKET_ENV",
    "AUX_SOCKET_HOME_FALLBACK",
    "AUX_SOCKET_RUNTIME_SUBDIR",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_EXECUTOR",
    "DEFAULT_SHELL",
    "DEFAULT_TRANSCRIPT_PREFIX",
    "DEV_PATH",
    "DEV_PTS_PATH",
    "HOME_SCAN_DEPTH",
    "NULL_DEVICE",
    "POLICY_COMMENT_PREFIX",
    "POLICY_FILE_NAME",
    "PROC_PATH",
    "ROOT_PATH",
    "TMP_PATH",
    "TRANSCRIPT_BINARY",
    "TRANSCRIPT_TIMESTAMP_FORMAT",
    "WORK_SCAN_DEPTH",
]
