"""
layered-sandbox: runtime config loader.

File: src/layered_sandbox/config/loader.py

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What should be included in this file
- Precedence logic: CLI > env (LAYERED_SANDBOX_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping and coercion.
- Path normalization relative to config file location.
- Redacted deterministic dump of effective config.

Functional requirements
- The config file lives in the operator's config directory, never in the
  working directory, so a sandboxed process cannot rewrite its next policy.
- Support profile overlays selected by CLI/env.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from layered_sandbox.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

CONFIG_DIR_NAME: Final[str] = "layered-sandbox"
DEFAULT_CONFIG_FILE: Final[str] = "config.toml"
ENV_PREFIX: Final[str] = "LAYERED_SANDBOX_"
CONFIG_PATH_ENV: Final[str] = f"{ENV_PREFIX}CONFIG"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_BOOLEAN_WORDS: Final[dict[str, bool]] = {
    **dict.fromkeys(("1", "true", "t", "yes", "y", "on"), True),
    **dict.fromkeys(("0", "false", "f", "no", "n", "off"), False),
}

# Only the fixed scalar settings get a LAYERED_SANDBOX_* variable; the env
# table and profile overlays are file/CLI only.
_ENV_UNBOUND_SECTIONS: Final[frozenset[str]] = frozenset({"profiles", "env", "meta"})

FieldPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """``$XDG_CONFIG_HOME/layered-sandbox/config.toml`` (``~/.config`` fallback)."""

    env = os.environ if environ is None else environ
    base = env.get("XDG_CONFIG_HOME", "").strip()
    root = Path(base) if base and Path(base).is_absolute() else Path.home() / ".config"
    return root / CONFIG_DIR_NAME / DEFAULT_CONFIG_FILE


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults.

    An explicit ``config_path`` (or ``LAYERED_SANDBOX_CONFIG``) must exist; the
    default location is optional. The selected profile overlays the file
    before environment and CLI overrides are applied.
    """

    env_map = dict(os.environ if environ is None else environ)
    cli_map = dict(cli_overrides or {})

    if config_path is None and env_map.get(CONFIG_PATH_ENV, "").strip():
        config_path = env_map[CONFIG_PATH_ENV].strip()
    if config_path is None:
        source, required = default_config_path(env_map), False
    else:
        source, required = Path(config_path).expanduser().resolve(), True

    selected_profile = _select_profile(profile, cli_map.pop("profile", None), env_map)

    effective = assert_valid_config(merge_config(default_config(), _read_toml(source, required)))
    if selected_profile is not None:
        effective = apply_profile_overlay(effective, selected_profile)

    for layer in (_env_layer(env_map), _cli_layer(cli_map)):
        effective = merge_config(effective, layer)
    effective = assert_valid_config(effective, active_profile=selected_profile)

    normalized = normalize_paths(effective, base_dir=source.parent)
    return assert_valid_config(normalized, active_profile=selected_profile)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Anchor relative path settings (top level and in profiles) at ``base_dir``."""

    materialized = merge_config({}, config)
    targets: list[FieldPath] = list(PATH_FIELDS)

    profiles = materialized.get("profiles")
    if isinstance(profiles, Mapping):
        for name in sorted(profiles):
            overlay = profiles[name]
            if isinstance(overlay, Mapping):
                targets.extend(
                    ("profiles", name, *field) for field in PATH_FIELDS if field[0] in overlay
                )

    for field in targets:
        raw = _lookup(materialized, field)
        if isinstance(raw, str) and raw.strip():
            _assign(materialized, field, _anchor(raw, base_dir))
    return materialized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None, from_cli: object, environ: Mapping[str, str]
) -> str | None:
    if from_cli is not None and not isinstance(from_cli, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    cli_profile = from_cli if isinstance(from_cli, str) else None
    for candidate in (explicit, cli_profile, environ.get(PROFILE_ENV)):
        if candidate is not None:
            return candidate.strip() or None
    return None


def env_bindings() -> dict[str, tuple[FieldPath, type]]:
    """Map each ``LAYERED_SANDBOX_*`` variable to the scalar setting it overrides."""

    bindings: dict[str, tuple[FieldPath, type]] = {}
    pending: list[tuple[FieldPath, object]] = [((), default_config())]
    while pending:
        prefix, node = pending.pop()
        if isinstance(node, Mapping):
            pending.extend(
                ((*prefix, key), node[key])
                for key in node
                if prefix or key not in _ENV_UNBOUND_SECTIONS
            )
        elif isinstance(node, (bool, int, str)):
            name = ENV_PREFIX + "_".join(part.upper() for part in prefix)
            bindings[name] = (prefix, type(node))
    return dict(sorted(bindings.items()))


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, (field, kind) in env_bindings().items():
        raw = environ.get(name)
        if raw is not None:
            _assign(layer, field, _coerce(raw.strip(), kind, name, field))
    return layer


def _coerce(value: str, kind: type, env_name: str, field: FieldPath) -> object:
    target = f"{env_name} -> {'.'.join(field)}"
    if kind is bool:
        if value.lower() not in _BOOLEAN_WORDS:
            raise ConfigLoadError(
                f"{target} must be a boolean (true/false/1/0/yes/no/on/off)"
            )
        return _BOOLEAN_WORDS[value.lower()]
    if kind is int:
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{target} must be an integer") from exc
    return value


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted keys (``run.transcript``) into a nested overlay; mappings merge."""

    layer: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        field = tuple(part for part in key.split(".") if part)
        if not field:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        value = cli_overrides[key]
        if isinstance(value, Mapping):
            existing = _lookup(layer, field)
            value = {**(existing if isinstance(existing, Mapping) else {}), **value}
        _assign(layer, field, value)
    return layer


def _assign(target: dict[str, Any], field: FieldPath, value: object) -> None:
    *parents, leaf = field
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


def _lookup(payload: Mapping[str, object], field: FieldPath) -> object | None:
    node: object = payload
    for part in field:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _anchor(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "CONFIG_DIR_NAME",
    "CONFIG_PATH_ENV",
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "default_config_path",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "normalize_paths",
]
