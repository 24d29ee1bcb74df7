"""Built-in sensitive-path rule tables.

Rules are immutable tagged values. One matcher, :meth:`SensitiveRule.matches`,
covers all three kinds:

- ``DIRECTORY``: a home-relative directory; the directory and everything under
  it is sensitive.
- ``FILE``: a home-relative exact file path.
- ``GLOB``: a shell-style base-name pattern (``*`` and ``?``, case-sensitive,
  never crossing a path separator).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import PurePath, PurePosixPath
from typing import Final


class RuleKind(str, Enum):
    """Kinds of sensitive-path rule."""

    DIRECTORY = "directory"
    FILE = "file"
    GLOB = "glob"


@dataclass(frozen=True, slots=True)
class SensitiveRule:
    """One sensitive-path rule."""

    kind: RuleKind
    value: str

    def __post_init__(self) -> None:
        normalized = self.value.strip()
        if not normalized:
            raise ValueError("rule value must not be empty")
        if "\x00" in normalized:
            raise ValueError("rule value must not contain NUL bytes")
        if self.kind is RuleKind.GLOB:
            if "/" in normalized:
                raise ValueError(f"glob rule must match base names only: {normalized!r}")
        else:
            relative = PurePosixPath(normalized)
            if relative.is_absolute() or ".." in relative.parts:
                raise ValueError(f"{self.kind.value} rule must be root-relative: {normalized!r}")
            normalized = relative.as_posix()
        object.__setattr__(self, "value", normalized)

    def matches(self, path: PurePath, root: PurePath) -> bool:
        """Return ``True`` when ``path`` is covered by this rule under ``root``."""

        if self.kind is RuleKind.GLOB:
            return fnmatchcase(path.name, self.value)
        anchor = root / self.value
        if self.kind is RuleKind.FILE:
            return path == anchor
        return path == anchor or anchor in path.parents

    def matches_name(self, name: str) -> bool:
        """Base-name match; only glob rules match by name."""

        return self.kind is RuleKind.GLOB and fnmatchcase(name, self.value)


@dataclass(frozen=True, slots=True)
class SensitiveRuleSet:
    """Immutable rule tables, constructed once per run."""

    rules: tuple[SensitiveRule, ...]

    @property
    def directories(self) -> tuple[SensitiveRule, ...]:
        return tuple(rule for rule in self.rules if rule.kind is RuleKind.DIRECTORY)

    @property
    def files(self) -> tuple[SensitiveRule, ...]:
        return tuple(rule for rule in self.rules if rule.kind is RuleKind.FILE)

    @property
    def globs(self) -> tuple[SensitiveRule, ...]:
        return tuple(rule for rule in self.rules if rule.kind is RuleKind.GLOB)

    def name_matches(self, *names: str) -> SensitiveRule | None:
        for rule in self.globs:
            if any(rule.matches_name(name) for name in names):
                return rule
        return None


SENSITIVE_DIRECTORY_NAMES: Final[tuple[str, ...]] = (
    ".ssh",
    ".gnupg",
    ".aws",
    ".config/gcloud",
    ".kube",
)

SENSITIVE_FILE_NAMES: Final[tuple[str, ...]] = (
    ".netrc",
    ".npmrc",
    ".docker/config.json",
    ".git-credentials",
)

SENSITIVE_GLOB_PATTERNS: Final[tuple[str, ...]] = (
    "*_credentials",
    "*_token",
    "*.pem",
    "*.key",
    "*_secret",
    "*.p12",
    "*.pfx",
)

ENV_FILE_PATTERN: Final[str] = ".env*"


def default_rule_set() -> SensitiveRuleSet:
    """Build the fixed default rule tables."""

    rules: list[SensitiveRule] = []
    rules.extend(SensitiveRule(RuleKind.DIRECTORY, name) for name in SENSITIVE_DIRECTORY_NAMES)
    rules.extend(SensitiveRule(RuleKind.FILE, name) for name in SENSITIVE_FILE_NAMES)
    rules.extend(SensitiveRule(RuleKind.GLOB, pattern) for pattern in SENSITIVE_GLOB_PATTERNS)
    return SensitiveRuleSet(rules=tuple(rules))


def env_rule_set() -> SensitiveRuleSet:
    """Rule set used by env-file protection."""

    return SensitiveRuleSet(rules=(SensitiveRule(RuleKind.GLOB, ENV_FILE_PATTERN),))


__all__ = [
    "ENV_FILE_PATTERN",
    "RuleKind",
    "SENSITIVE_DIRECTORY_NAMES",
    "SENSITIVE_FILE_NAMES",
    "SENSITIVE_GLOB_PATTERNS",
    "SensitiveRule",
    "SensitiveRuleSet",
    "default_rule_set",
    "env_rule_set",
]
