"""Unit tests for policy construction and read-only directory resolution."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from layered_sandbox.config import default_config, merge_config
from layered_sandbox.sandbox.errors import PolicyError, PolicyFileError
from layered_sandbox.sandbox.policy import (
    NetworkMode,
    Policy,
    build_policy,
    parse_policy_lines,
    read_policy_file,
    resolve_auxiliary_mount,
    resolve_ro_directories,
)


@pytest.fixture()
def work(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    for name in ("vendor", "dist", "docs", "src"):
        (root / name).mkdir(parents=True)
    (root / "README.md").write_text("readme\n", encoding="utf-8")
    return root.resolve()


def test_parse_policy_lines_skips_blanks_and_comments() -> None:
    text = "# frozen inputs\nvendor\n\n   # indented comment\n  docs  \n"

    assert parse_policy_lines(text) == ("vendor", "docs")


def test_read_policy_file_absent_yields_no_entries(work: Path) -> None:
    assert read_policy_file(work) == ()


def test_read_policy_file_reads_entries(work: Path) -> None:
    (work / ".sandbox-readonly").write_text("vendor\n# note\ndist\n", encoding="utf-8")

    assert read_policy_file(work) == ("vendor", "dist")


@pytest.mark.skipif(os.geteuid() == 0, reason="root bypasses file permissions")
def test_unreadable_policy_file_is_fatal(work: Path) -> None:
    policy_file = work / ".sandbox-readonly"
    policy_file.write_text("vendor\n", encoding="utf-8")
    policy_file.chmod(0)
    try:
        with pytest.raises(PolicyFileError):
            read_policy_file(work)
    finally:
        policy_file.chmod(0o644)


def test_policy_file_that_is_a_directory_is_fatal(work: Path) -> None:
    (work / ".sandbox-readonly").mkdir()

    with pytest.raises(PolicyFileError):
        read_policy_file(work)


def test_undecodable_policy_file_is_fatal(work: Path) -> None:
    (work / ".sandbox-readonly").write_bytes(b"vendor\n\xff\xfe\n")

    with pytest.raises(PolicyFileError):
        read_policy_file(work)


def test_resolver_lists_file_entries_before_cli_entries(work: Path) -> None:
    resolution = resolve_ro_directories(["dist"], ["vendor", "docs"], work)

    assert resolution.directories == (work / "vendor", work / "docs", work / "dist")
    assert resolution.issues == ()


def test_resolver_deduplicates_equivalent_spellings(work: Path) -> None:
    resolution = resolve_ro_directories(
        ["vendor", str(work / "vendor"), "./vendor/"],
        ["vendor", "src/../vendor"],
        work,
    )

    assert resolution.directories == (work / "vendor",)


def test_resolver_drops_invalid_entries_with_reasons(work: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()

    resolution = resolve_ro_directories(
        ["missing", "README.md", str(outside), "../outside", "  "],
        ["vendor"],
        work,
    )

    assert resolution.directories == (work / "vendor",)
    reasons = [issue.reason for issue in resolution.issues]
    assert reasons == [
        "does not exist",
        "is not a directory",
        "outside working directory",
        "outside working directory",
        "empty entry",
    ]
    assert {issue.source for issue in resolution.issues} == {"command line"}


def test_resolver_rejects_symlink_escaping_work_root(work: Path, tmp_path: Path) -> None:
    outside = tmp_path / "escape-target"
    outside.mkdir()
    (work / "escape").symlink_to(outside, target_is_directory=True)

    resolution = resolve_ro_directories([], ["escape"], work)

    assert resolution.directories == ()
    assert resolution.issues[0].reason == "outside working directory"
    assert resolution.issues[0].source == ".sandbox-readonly"


def test_resolver_expands_home(work: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(work.parent))

    resolution = resolve_ro_directories([f"~/{work.name}/docs"], [], work)

    assert resolution.directories == (work / "docs",)


def test_resolver_accepts_work_root_itself(work: Path) -> None:
    resolution = resolve_ro_directories(["."], [], work)

    assert resolution.directories == (work,)


def test_policy_rejects_ro_directory_outside_work_root(tmp_path: Path) -> None:
    with pytest.raises(PolicyError):
        Policy(
            home_root=tmp_path / "home",
            work_root=tmp_path / "work",
            ro_directories=(tmp_path / "elsewhere",),
        )


def test_policy_requires_absolute_roots() -> None:
    with pytest.raises(PolicyError):
        Policy(home_root=Path("home"), work_root=Path("/work"))


def test_policy_deduplicates_ro_directories(tmp_path: Path) -> None:
    work = tmp_path / "work"
    policy = Policy(
        home_root=tmp_path / "home",
        work_root=work,
        ro_directories=(work / "a", work / "b", work / "a", work / "b" / "."),
    )

    assert policy.ro_directories == (work / "a", work / "b")


@pytest.mark.parametrize(
    "env",
    [{"1BAD": "x"}, {"BAD-NAME": "x"}, {"GOOD": "nul\x00byte"}],
)
def test_policy_rejects_invalid_environment(tmp_path: Path, env: dict[str, str]) -> None:
    with pytest.raises(PolicyError):
        Policy(home_root=tmp_path, work_root=tmp_path, extra_env=env)


def test_policy_tool_config_glob_is_base_name_only(tmp_path: Path) -> None:
    with pytest.raises(PolicyError):
        Policy(home_root=tmp_path, work_root=tmp_path, tool_config_glob=".config/claude*")
    assert Policy(home_root=tmp_path, work_root=tmp_path, tool_config_glob="").tool_config_glob is (
        None
    )


def test_auxiliary_mount_precedence(tmp_path: Path) -> None:
    home = tmp_path / "home"

    assert resolve_auxiliary_mount(home, configured="/srv/ab", environ={}) == Path("/srv/ab")
    assert resolve_auxiliary_mount(
        home, environ={"AGENT_BROWSER_SOCKET_DIR": "/run/ab", "XDG_RUNTIME_DIR": "/run/user/1"}
    ) == Path("/run/ab")
    assert resolve_auxiliary_mount(home, environ={"XDG_RUNTIME_DIR": "/run/user/1"}) == Path(
        "/run/user/1/agent-browser"
    )
    assert resolve_auxiliary_mount(home, environ={}) == home / ".agent-browser"


def test_build_policy_reads_config_sections(work: Path, tmp_path: Path) -> None:
    home = tmp_path / "home"
    home.mkdir()
    (work / ".sandbox-readonly").write_text("vendor\nmissing\n", encoding="utf-8")
    config = merge_config(
        default_config(),
        {
            "protection": {"sensitive": False, "env": True},
            "network": {"mode": "isolated"},
            "run": {"tool_config_glob": ".claude*"},
            "env": {"FEATURE_FLAG": "1"},
            "auxiliary": {"enabled": True, "path": ""},
        },
    )

    policy, resolution = build_policy(
        config,
        home_root=home,
        work_root=work,
        cli_ro_dirs=["dist"],
        environ={"XDG_RUNTIME_DIR": str(tmp_path / "run")},
    )

    assert policy.sensitive_protection_enabled is False
    assert policy.env_protection_enabled is True
    assert policy.network_mode is NetworkMode.ISOLATED
    assert policy.tool_config_glob == ".claude*"
    assert policy.extra_env == {"FEATURE_FLAG": "1"}
    assert policy.auxiliary_mount == tmp_path / "run" / "agent-browser"
    assert policy.ro_directories == (work / "dist", work / "vendor")
    assert [issue.entry for issue in resolution.issues] == ["missing"]


def test_build_policy_defaults(work: Path, tmp_path: Path) -> None:
    policy, resolution = build_policy(
        default_config(), home_root=tmp_path, work_root=work, policy_file_lines=()
    )

    assert policy.sensitive_protection_enabled is True
    assert policy.env_protection_enabled is False
    assert policy.network_mode is NetworkMode.SHARED
    assert policy.auxiliary_mount is None
    assert policy.tool_config_glob is None
    assert policy.ro_directories == ()
    assert resolution.issues == ()
