"""
layered-sandbox: unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior, structured errors, profile overlays, and redaction.

What this test file should cover
- Built-in defaults validate successfully.
- Rejects unknown keys and invalid types with actionable paths.
- Schema version mismatch returns migration guidance.
- Ensures redaction is recursive and non-destructive.
"""

from __future__ import annotations

import pytest

from layered_sandbox.config.schema import (
    BUILTIN_PROFILE_NAMES,
    ConfigSchemaVersion,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def _issue_paths(config: dict[str, object]) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_default_config_validates_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert tuple(sorted(result.config["profiles"])) == tuple(sorted(BUILTIN_PROFILE_NAMES))


def test_unknown_key_rejection_is_explicit() -> None:
    config = merge_config(default_config(), {"protection": {"ssh": True}, "plugins": {}})

    assert _issue_paths(config) == ["plugins", "protection.ssh"]


def test_type_validation_reports_structured_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "protection": {"sensitive": "yes"},
            "network": {"mode": "bridged"},
            "run": {"default_command": "claude"},
        },
    )

    result = validate_config(config)

    assert not result.is_valid
    messages = {issue.path: issue.message for issue in result.issues}
    assert messages["protection.sensitive"] == "expected boolean, got str"
    assert "expected one of: isolated, shared" in messages["network.mode"]
    assert messages["run.default_command"] == "expected list of strings, got str"


def test_missing_section_is_reported() -> None:
    config = default_config()
    del config["network"]  # type: ignore[misc]

    assert _issue_paths(config) == ["network"]


def test_tool_config_glob_must_be_a_base_name() -> None:
    config = merge_config(default_config(), {"run": {"tool_config_glob": ".config/claude*"}})

    assert _issue_paths(config) == ["run.tool_config_glob"]


def test_transcript_prefix_must_be_plain() -> None:
    config = merge_config(default_config(), {"run": {"transcript_prefix": "../logs/x"}})

    assert _issue_paths(config) == ["run.transcript_prefix"]


def test_autonomous_args_require_default_command() -> None:
    config = merge_config(default_config(), {"run": {"autonomous_args": ["--yolo"]}})

    assert _issue_paths(config) == ["run.autonomous_args"]


@pytest.mark.parametrize(
    ("env", "path"),
    [
        ({"1ABC": "x"}, "env.1ABC"),
        ({"MY-FLAG": "x"}, "env.MY-FLAG"),
        ({"COUNT": 3}, "env.COUNT"),
        ({"NUL": "a\x00b"}, "env.NUL"),
    ],
)
def test_env_table_validation(env: dict[str, object], path: str) -> None:
    config = merge_config(default_config(), {"env": env})

    assert _issue_paths(config) == [path]


def test_log_level_is_case_insensitive() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": "info"}})

    assert assert_valid_config(config)["observability"]["log_level"] == "INFO"


def test_schema_version_mismatch_returns_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    result = validate_config(config)

    assert [issue.message for issue in result.issues] == [migration_guidance(2)]
    assert "upgrade the layered-sandbox launcher" in migration_guidance(2)
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_profile_overlays_are_partial_but_typed() -> None:
    config = merge_config(
        default_config(),
        {
            "profiles": {
                "ci": {"network": {"mode": "isolated"}},
                "Bad": {},
                "broken": {"run": {"transcript": "yes"}, "extra": {}},
            }
        },
    )

    assert _issue_paths(config) == [
        "profiles.Bad",
        "profiles.broken.extra",
        "profiles.broken.run.transcript",
    ]


def test_apply_profile_overlay_merges_and_replaces_lists() -> None:
    config = merge_config(
        default_config(),
        {"run": {"default_command": ["bash", "-l"]}},
    )

    applied = apply_profile_overlay(config, "agent")

    assert applied["run"]["default_command"] == ["claude"]
    assert applied["run"]["transcript_prefix"] == "claude"
    assert applied["protection"] == {"sensitive": True, "env": False}


def test_apply_profile_overlay_none_or_blank_is_identity() -> None:
    config = default_config()

    assert apply_profile_overlay(config, None) == config
    assert apply_profile_overlay(config, "  ") == config


def test_apply_unknown_profile_raises() -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        apply_profile_overlay(default_config(), "missing")

    assert excinfo.value.issues[0].path == "profiles"


def test_active_profile_must_exist() -> None:
    result = validate_config(default_config(), active_profile="ghost")

    assert [issue.path for issue in result.issues] == ["profiles"]


def test_redaction_is_recursive_and_non_destructive() -> None:
    config = merge_config(
        default_config(),
        {"env": {"OPENAI_API_KEY": "sk-live", "DB_PASSWORD": "hunter2", "EDITOR": "vim"}},
    )

    redacted = redact_config(config)

    assert redacted["env"] == {
        "DB_PASSWORD": "<redacted>",
        "EDITOR": "vim",
        "OPENAI_API_KEY": "<redacted>",
    }
    assert config["env"]["OPENAI_API_KEY"] == "sk-live"
    assert redact_config(["not", "a", "mapping"]) == {}


def test_merge_config_does_not_mutate_inputs() -> None:
    base = default_config()
    overlay = {"run": {"default_command": ["vim"]}}

    merged = merge_config(base, overlay)
    merged["run"]["default_command"].append("-n")

    assert base["run"]["default_command"] == []
    assert overlay["run"]["default_command"] == ["vim"]
