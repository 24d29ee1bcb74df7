"""Sensitive-path classification with bounded-depth filesystem scans."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from layered_sandbox.sandbox.rules import SensitiveRuleSet, default_rule_set

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    """Result of classifying one path."""

    SENSITIVE = "sensitive"
    NOT_SENSITIVE = "not_sensitive"


@dataclass(frozen=True, slots=True)
class ScanIssue:
    """A path the scanner could not inspect."""

    path: Path
    reason: str


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Sensitive paths found under one root, in discovery order."""

    root: Path
    directories: tuple[Path, ...] = ()
    files: tuple[Path, ...] = ()
    issues: tuple[ScanIssue, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.directories and not self.files


@dataclass(slots=True)
class _Collector:
    directories: list[Path] = field(default_factory=list)
    files: list[Path] = field(default_factory=list)
    issues: list[ScanIssue] = field(default_factory=list)
    seen: set[Path] = field(default_factory=set)

    def add_directory(self, path: Path) -> None:
        if path not in self.seen:
            self.seen.add(path)
            self.directories.append(path)

    def add_file(self, path: Path) -> None:
        if path not in self.seen:
            self.seen.add(path)
            self.files.append(path)

    def add_issue(self, path: Path, exc: OSError) -> None:
        reason = exc.strerror or exc.__class__.__name__
        self.issues.append(ScanIssue(path=path, reason=reason))


class PathClassifier:
    """Decide whether paths are sensitive under a root.

    A disabled classifier never touches the filesystem: ``classify`` answers
    ``NOT_SENSITIVE`` and ``scan`` returns an empty result.
    """

    def __init__(self, rules: SensitiveRuleSet | None = None, *, enabled: bool = True) -> None:
        self._rules = rules if rules is not None else default_rule_set()
        self._enabled = bool(enabled)
        self._scan_count = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def rules(self) -> SensitiveRuleSet:
        return self._rules

    @property
    def scan_count(self) -> int:
        """Number of filesystem inspections performed so far."""

        return self._scan_count

    def classify(self, path: Path | str, root: Path | str, scan_depth: int) -> Classification:
        if not self._enabled:
            return Classification.NOT_SENSITIVE
        _validate_depth(scan_depth)

        candidate = _absolute(path)
        base = _absolute(root)
        for group in (self._rules.directories, self._rules.files):
            if any(rule.matches(candidate, base) for rule in group):
                return Classification.SENSITIVE

        self._scan_count += 1
        names = _reachable_file_names(candidate, base, scan_depth)
        if names and self._rules.name_matches(*names) is not None:
            return Classification.SENSITIVE
        return Classification.NOT_SENSITIVE

    def scan(
        self,
        root: Path | str,
        scan_depth: int,
        *,
        include_named: bool = True,
        prune: Iterable[Path] = (),
    ) -> ScanResult:
        """Collect sensitive directories and files under ``root``.

        ``include_named`` adds the root-relative directory and file rules;
        otherwise only glob rules apply. Directories listed in ``prune`` and
        directories matched by a directory rule are never descended into.
        """

        base = _absolute(root)
        if not self._enabled:
            return ScanResult(root=base)
        _validate_depth(scan_depth)

        self._scan_count += 1
        collected = _Collector()
        pruned = {_absolute(item) for item in prune}

        if not base.is_dir():
            logger.debug("scan root %s does not exist; skipping", base)
            return ScanResult(root=base)

        if include_named:
            self._collect_named(base, collected, pruned)
            pruned.update(collected.directories)

        self._walk(base, scan_depth, collected, pruned)
        logger.debug(
            "scanned %s to depth %d: %d directories, %d files, %d issues",
            base,
            scan_depth,
            len(collected.directories),
            len(collected.files),
            len(collected.issues),
        )
        return ScanResult(
            root=base,
            directories=tuple(collected.directories),
            files=tuple(collected.files),
            issues=tuple(collected.issues),
        )

    def _collect_named(self, base: Path, collected: _Collector, pruned: set[Path]) -> None:
        for rule in self._rules.directories:
            anchor = base / rule.value
            if _is_under_any(anchor, pruned) or not os.path.lexists(anchor):
                continue
            if anchor.is_dir():
                collected.add_directory(anchor)
            else:
                collected.add_file(anchor)

        for rule in self._rules.files:
            anchor = base / rule.value
            if _is_under_any(anchor, pruned) or _is_under_any(anchor, collected.directories):
                continue
            if not os.path.lexists(anchor):
                continue
            if anchor.is_dir():
                collected.add_directory(anchor)
            else:
                collected.add_file(anchor)

    def _walk(self, base: Path, max_depth: int, collected: _Collector, pruned: set[Path]) -> None:
        stack: list[tuple[Path, int]] = [(base, 0)]
        while stack:
            directory, depth = stack.pop()
            try:
                with os.scandir(directory) as iterator:
                    entries = sorted(iterator, key=lambda item: item.name)
            except OSError as exc:
                collected.add_issue(directory, exc)
                logger.warning("cannot scan %s: %s", directory, exc.strerror or exc)
                continue

            child_depth = depth + 1
            subdirectories: list[Path] = []
            for entry in entries:
                entry_path = Path(entry.path)
                if entry_path in pruned:
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if child_depth < max_depth:
                            subdirectories.append(entry_path)
                        continue
                    if not entry.is_file():
                        continue
                    names = [entry.name]
                    if entry.is_symlink():
                        names.append(Path(os.path.realpath(entry_path)).name)
                except OSError as exc:
                    collected.add_issue(entry_path, exc)
                    continue
                if self._rules.name_matches(*names) is not None:
                    collected.add_file(entry_path)

            # Reverse so the stack pops children in name order.
            stack.extend((child, child_depth) for child in reversed(subdirectories))


def _absolute(path: Path | str) -> Path:
    return Path(os.path.abspath(os.fspath(path)))


def _validate_depth(scan_depth: int) -> None:
    if isinstance(scan_depth, bool) or not isinstance(scan_depth, int) or scan_depth < 1:
        raise ValueError("scan_depth must be an integer >= 1")


def _is_under_any(path: Path, ancestors: Iterable[Path]) -> bool:
    return any(path == item or item in path.parents for item in ancestors)


def _reachable_file_names(path: Path, root: Path, max_depth: int) -> tuple[str, ...]:
    """Names to match for ``path`` if a scan of ``root`` would report it as a file."""

    try:
        relative = path.relative_to(root)
    except ValueError:
        return ()
    if not relative.parts or len(relative.parts) > max_depth:
        return ()

    cursor = root
    for part in relative.parts[:-1]:
        cursor = cursor / part
        if cursor.is_symlink() or not cursor.is_dir():
            return ()

    if not path.is_file():
        return ()
    if path.is_symlink():
        return (path.name, Path(os.path.realpath(path)).name)
    return (path.name,)


__all__ = [
    "Classification",
    "PathClassifier",
    "ScanIssue",
    "ScanResult",
]
