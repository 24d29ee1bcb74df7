"""
layered-sandbox: configuration schema and validation.

File: src/layered_sandbox/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for types, enums and string lists.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Ship the built-in ``shell`` and ``agent`` profiles.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from layered_sandbox.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_EXECUTOR,
    DEFAULT_TRANSCRIPT_PREFIX,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("shell", "agent")
SECTION_NAMES: Final[tuple[str, ...]] = (
    "protection",
    "network",
    "run",
    "env",
    "auxiliary",
    "observability",
)

_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("auxiliary", "path"),
    ("observability", "log_file"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ProtectionConfig(TypedDict):
    sensitive: bool
    env: bool


class NetworkConfig(TypedDict):
    mode: Literal["shared", "isolated"]


class RunConfig(TypedDict):
    default_command: list[str]
    autonomous_args: list[str]
    tool_config_glob: str
    transcript: bool
    transcript_prefix: str
    executor: str


class AuxiliaryConfig(TypedDict):
    enabled: bool
    path: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_file: str


class ProfileOverlay(TypedDict, total=False):
    protection: dict[str, object]
    network: dict[str, object]
    run: dict[str, object]
    env: dict[str, str]
    auxiliary: dict[str, object]
    observability: dict[str, object]


class SandboxConfig(TypedDict):
    meta: MetaConfig
    protection: ProtectionConfig
    network: NetworkConfig
    run: RunConfig
    env: dict[str, str]
    auxiliary: AuxiliaryConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[SandboxConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "protection": {
        "sensitive": True,
        "env": False,
    },
    "network": {
        "mode": "shared",
    },
    "run": {
        "default_command": [],
        "autonomous_args": [],
        "tool_config_glob": "",
        "transcript": False,
        "transcript_prefix": DEFAULT_TRANSCRIPT_PREFIX,
        "executor": DEFAULT_EXECUTOR,
    },
    "env": {},
    "auxiliary": {
        "enabled": False,
        "path": "",
    },
    "observability": {
        "log_level": "WARNING",
        "log_format": "text",
        "log_file": "",
    },
    "profiles": {
        "shell": {},
        "agent": {
            "run": {
                "default_command": ["claude"],
                "autonomous_args": ["--dangerously-skip-permissions"],
                "tool_config_glob": ".claude*",
                "transcript_prefix": "claude",
            },
            "env": {"CLAUDE_CODE_EXPERIMENTAL_AGENT_TEAMS": "1"},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector, bool], dict[str, Any]]


def default_config() -> SandboxConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade config.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the layered-sandbox launcher"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``.

    Lists are replaced wholesale, never concatenated.
    """

    merged: dict[str, Any] = {}
    _merge_into(merged, base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = merge_config({}, config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        available = ", ".join(sorted(profiles_raw)) or "<none>"
        raise ConfigValidationError(
            (
                ConfigValidationIssue(
                    "profiles", f"profile {selected!r} is not defined (available: {available})"
                ),
            )
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and dry-run output."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redacted(config)
    return redacted if isinstance(redacted, dict) else {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"meta", "profiles", *SECTION_NAMES}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, {"meta", *SECTION_NAMES}, "", issues)

    out: dict[str, Any] = {}

    raw_meta = payload.get("meta")
    if raw_meta is not None:
        meta = _as_object(raw_meta, "meta", issues)
        if meta is not None:
            out["meta"] = _validate_meta(meta, "meta", issues)

    _validate_sections(payload, "", issues, out, partial=False)

    raw_profiles = payload.get("profiles")
    if raw_profiles is not None:
        profiles = _as_object(raw_profiles, "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, "profiles", issues)
    return out


def _validate_sections(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    out: dict[str, Any],
    *,
    partial: bool,
) -> None:
    for key in SECTION_NAMES:
        raw = payload.get(key)
        if raw is None:
            continue
        section_path = _join(path, key)
        section = _as_object(raw, section_path, issues)
        if section is None:
            continue
        out[key] = _SECTION_VALIDATORS[key](section, section_path, issues, partial)


def _validate_meta(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        version_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], version_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(version_path, migration_guidance(parsed))
    return out


def _validate_protection(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"sensitive", "env"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_bool(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_network(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"mode"}, path, issues)
    if not partial:
        _require_keys(payload, {"mode"}, path, issues)

    out: dict[str, Any] = {}
    if "mode" in payload:
        parsed = _as_enum(
            payload["mode"], _join(path, "mode"), issues, allowed_values=("shared", "isolated")
        )
        if parsed is not None:
            out["mode"] = parsed
    return out


def _validate_run(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "default_command",
        "autonomous_args",
        "tool_config_glob",
        "transcript",
        "transcript_prefix",
        "executor",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}

    for key in ("default_command", "autonomous_args"):
        if key in payload:
            parsed_list = _as_str_list(payload[key], _join(path, key), issues)
            if parsed_list is not None:
                out[key] = parsed_list

    if "tool_config_glob" in payload:
        glob_path = _join(path, "tool_config_glob")
        raw_glob = payload["tool_config_glob"]
        if not isinstance(raw_glob, str):
            issues.add(glob_path, f"expected string, got {type(raw_glob).__name__}")
        elif "/" in raw_glob:
            issues.add(glob_path, "must be a base-name glob without '/'")
        else:
            out["tool_config_glob"] = raw_glob.strip()

    if "transcript" in payload:
        parsed_transcript = _as_bool(payload["transcript"], _join(path, "transcript"), issues)
        if parsed_transcript is not None:
            out["transcript"] = parsed_transcript

    if "transcript_prefix" in payload:
        prefix_path = _join(path, "transcript_prefix")
        parsed_prefix = _as_str(payload["transcript_prefix"], prefix_path, issues)
        if parsed_prefix is not None:
            if "/" in parsed_prefix or "\x00" in parsed_prefix:
                issues.add(prefix_path, "must be a plain file name prefix")
            else:
                out["transcript_prefix"] = parsed_prefix

    if "executor" in payload:
        parsed_executor = _as_path_text(payload["executor"], _join(path, "executor"), issues)
        if parsed_executor is not None:
            out["executor"] = parsed_executor

    if not partial and out.get("autonomous_args") and not out.get("default_command"):
        issues.add(
            _join(path, "autonomous_args"),
            "autonomous_args require a default_command to attach to",
        )

    return out


def _validate_env(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        item_path = _join(path, name)
        if not _ENV_NAME_PATTERN.fullmatch(name):
            issues.add(item_path, "must be an env var name (example: MY_TOOL_FLAG)")
            continue
        value = payload[name]
        if not isinstance(value, str):
            issues.add(item_path, f"expected string, got {type(value).__name__}")
            continue
        if "\x00" in value:
            issues.add(item_path, "must not contain NUL bytes")
            continue
        out[name] = value
    return out


def _validate_auxiliary(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"enabled", "path"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "enabled" in payload:
        parsed_enabled = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
        if parsed_enabled is not None:
            out["enabled"] = parsed_enabled
    if "path" in payload:
        parsed_path = _as_optional_path_text(payload["path"], _join(path, "path"), issues)
        if parsed_path is not None:
            out["path"] = parsed_path
    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_format", "log_file"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}

    if "log_level" in payload:
        raw_level = payload["log_level"]
        parsed_log_level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level

    if "log_format" in payload:
        parsed_log_format = _as_enum(
            payload["log_format"],
            _join(path, "log_format"),
            issues,
            allowed_values=("json", "text"),
        )
        if parsed_log_format is not None:
            out["log_format"] = parsed_log_format

    if "log_file" in payload:
        parsed_log_file = _as_optional_path_text(
            payload["log_file"], _join(path, "log_file"), issues
        )
        if parsed_log_file is not None:
            out["log_file"] = parsed_log_file

    return out


_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "protection": _validate_protection,
    "network": _validate_network,
    "run": _validate_run,
    "env": _validate_env,
    "auxiliary": _validate_auxiliary,
    "observability": _validate_observability,
}


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        _reject_unknown_keys(profile_obj, set(SECTION_NAMES), profile_path, issues)
        overlay: dict[str, Any] = {}
        _validate_sections(profile_obj, profile_path, issues, overlay, partial=True)
        out[profile_name] = overlay
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_optional_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    if isinstance(value, str) and not value.strip():
        return ""
    return _as_path_text(value, path, issues)


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        item_path = f"{path}[{index}]"
        if not isinstance(item, str) or not item:
            issues.add(item_path, "expected non-empty string")
            return None
        if "\x00" in item:
            issues.add(item_path, "must not contain NUL bytes")
            return None
        out.append(item)
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if not isinstance(value, Mapping):
            target[key] = copy.deepcopy(list(value) if isinstance(value, tuple) else value)
            continue
        nested = target.get(key)
        if not isinstance(nested, dict):
            nested = target[key] = {}
        _merge_into(nested, value)


def _redacted(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redacted(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redacted(item) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "ProfileOverlay",
    "SECTION_NAMES",
    "SandboxConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
