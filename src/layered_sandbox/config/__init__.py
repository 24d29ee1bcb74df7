"""
layered-sandbox config package public API.

File: src/layered_sandbox/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``config.toml`` + ``LAYERED_SANDBOX_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from layered_sandbox.config.loader import (
    CONFIG_DIR_NAME,
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    default_config_path,
    dump_effective_config,
    env_bindings,
    load_config,
    normalize_paths,
)
from layered_sandbox.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    SECTION_NAMES,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ProfileOverlay,
    SandboxConfig,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "CONFIG_DIR_NAME",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "ProfileOverlay",
    "SECTION_NAMES",
    "SandboxConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "default_config_path",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
