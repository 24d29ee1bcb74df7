"""Layer builder: compiles a :class:`Policy` into an ordered mount sequence.

Operations are applied by the executor in list order and a later operation
decides the visibility of its target subtree. Precedence is therefore encoded
purely by position, so the plan is an explicit ordered list and every phase
appends after the previous one:

1. base read-only root, ``/dev``, ``/proc`` and a fresh ``/tmp``
2. home directory read-only
3. sensitive directories and files under home masked
4. tool config paths under home unlocked read-write
5. working directory unlocked read-write
6. sensitive files under the working directory masked
7. ``.env*`` files masked (env protection only)
8. declared read-only directories narrowed back to read-only
9. auxiliary socket directory unlocked read-write

Any bind that would uncover an existing mask is immediately followed by that
mask again, so a mask always sits after every operation exposing its target.
The one exception is a tool config path that is itself sensitive: the unlock
wins there.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path

from layered_sandbox.constants import (
    DEV_PATH,
    DEV_PTS_PATH,
    HOME_SCAN_DEPTH,
    PROC_PATH,
    ROOT_PATH,
    TMP_PATH,
    WORK_SCAN_DEPTH,
)
from layered_sandbox.sandbox.classifier import PathClassifier, ScanResult
from layered_sandbox.sandbox.policy import Policy
from layered_sandbox.sandbox.rules import SensitiveRuleSet, default_rule_set, env_rule_set

logger = logging.getLogger(__name__)


class MountKind(str, Enum):
    """Visibility directive understood by the executor."""

    RO_BIND = "ro_bind"
    RW_BIND = "rw_bind"
    OPAQUE_MASK = "opaque_mask"
    NULL_FILE_MASK = "null_file_mask"
    DEV = "dev"
    DEV_BIND = "dev_bind"
    PROC = "proc"

    @property
    def is_mask(self) -> bool:
        return self in {MountKind.OPAQUE_MASK, MountKind.NULL_FILE_MASK}

    @property
    def is_bind(self) -> bool:
        return self in {MountKind.RO_BIND, MountKind.RW_BIND}


class Phase(str, Enum):
    """Structural phases, in application order."""

    BASE = "base"
    HOME_LOCKDOWN = "home_lockdown"
    HOME_SENSITIVE = "home_sensitive"
    CONFIG_UNLOCK = "config_unlock"
    WORKDIR_UNLOCK = "workdir_unlock"
    WORKDIR_SENSITIVE = "workdir_sensitive"
    ENV_BLOCK = "env_block"
    RO_DIRECTORIES = "ro_directories"
    AUXILIARY = "auxiliary"


@dataclass(frozen=True, slots=True)
class MountOperation:
    """One directive in the ordered sequence."""

    target: Path
    kind: MountKind
    phase: Phase
    reapplied: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "target": str(self.target),
            "kind": self.kind.value,
            "phase": self.phase.value,
            "reapplied": self.reapplied,
        }


@dataclass(frozen=True, slots=True)
class PlanIssue:
    """Non-fatal problem noticed while building a phase."""

    phase: Phase
    path: Path
    reason: str

    def describe(self) -> str:
        return f"{self.path}: {self.reason}"


class LayerPlan:
    """Ordered, append-only list of mount operations with per-phase reporting."""

    def __init__(self) -> None:
        self._operations: list[MountOperation] = []
        self._phase_targets: dict[Phase, list[Path]] = {phase: [] for phase in Phase}
        self._issues: list[PlanIssue] = []
        self._active_masks: dict[Path, MountKind] = {}
        self._exempt: set[Path] = set()
        self.skipped_phases: list[Phase] = []
        self.sensitive_scans = 0

    def __iter__(self) -> Iterator[MountOperation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    @property
    def operations(self) -> tuple[MountOperation, ...]:
        return tuple(self._operations)

    @property
    def issues(self) -> tuple[PlanIssue, ...]:
        return tuple(self._issues)

    @property
    def active_masks(self) -> dict[Path, MountKind]:
        return dict(self._active_masks)

    def phase_targets(self, phase: Phase) -> tuple[Path, ...]:
        return tuple(self._phase_targets[phase])

    def masks(self) -> tuple[MountOperation, ...]:
        return tuple(op for op in self._operations if op.kind.is_mask)

    def indexes_of(self, target: Path, kind: MountKind | None = None) -> tuple[int, ...]:
        return tuple(
            index
            for index, op in enumerate(self._operations)
            if op.target == target and (kind is None or op.kind is kind)
        )

    def add(self, target: Path, kind: MountKind, phase: Phase) -> None:
        self._append(MountOperation(target=target, kind=kind, phase=phase))

    def add_mask(self, target: Path, kind: MountKind, phase: Phase) -> bool:
        """Append a mask unless it is already in force or the path was unlocked."""

        if not kind.is_mask:
            raise ValueError(f"{kind.value} is not a mask operation")
        if target in self._active_masks or target in self._exempt:
            return False
        if self.visible_kind(target) is MountKind.OPAQUE_MASK:
            return False
        self._append(MountOperation(target=target, kind=kind, phase=phase))
        self._active_masks[target] = kind
        return True

    def visible_kind(self, path: Path) -> MountKind | None:
        """Kind of the last operation deciding what the sandbox sees at ``path``."""

        for operation in reversed(self._operations):
            if operation.target == path or operation.target in path.parents:
                return operation.kind
        return None

    def add_bind(self, target: Path, kind: MountKind, phase: Phase) -> None:
        """Append a bind and re-apply every mask it would uncover."""

        if not kind.is_bind:
            raise ValueError(f"{kind.value} is not a bind operation")
        self._append(MountOperation(target=target, kind=kind, phase=phase))
        for masked, mask_kind in list(self._active_masks.items()):
            if masked == target or target in masked.parents:
                self._append(
                    MountOperation(target=masked, kind=mask_kind, phase=phase, reapplied=True)
                )

    def unlock(self, target: Path, phase: Phase) -> bool:
        """Read-write bind that overrides a mask on the same path.

        Returns ``True`` when an existing mask on ``target`` was overridden.
        """

        overridden = self._active_masks.pop(target, None) is not None
        self._exempt.add(target)
        self.add_bind(target, MountKind.RW_BIND, phase)
        return overridden

    def report(self, phase: Phase, path: Path, reason: str) -> None:
        self._issues.append(PlanIssue(phase=phase, path=path, reason=reason))

    def to_dict(self) -> dict[str, object]:
        return {
            "operations": [op.to_dict() for op in self._operations],
            "phases": {
                phase.value: [str(path) for path in targets]
                for phase, targets in self._phase_targets.items()
            },
            "skipped_phases": [phase.value for phase in self.skipped_phases],
            "issues": [
                {"phase": issue.phase.value, "path": str(issue.path), "reason": issue.reason}
                for issue in self._issues
            ],
        }

    def _append(self, operation: MountOperation) -> None:
        self._operations.append(operation)
        self._phase_targets[operation.phase].append(operation.target)


class LayerBuilder:
    """Compile a policy into a :class:`LayerPlan`."""

    def __init__(
        self,
        *,
        rules: SensitiveRuleSet | None = None,
        env_rules: SensitiveRuleSet | None = None,
        home_scan_depth: int = HOME_SCAN_DEPTH,
        work_scan_depth: int = WORK_SCAN_DEPTH,
        dev_pts: bool | None = None,
    ) -> None:
        self._rules = rules if rules is not None else default_rule_set()
        self._env_rules = env_rules if env_rules is not None else env_rule_set()
        self._home_scan_depth = home_scan_depth
        self._work_scan_depth = work_scan_depth
        self._dev_pts = Path(DEV_PTS_PATH).is_dir() if dev_pts is None else dev_pts

    def build(self, policy: Policy) -> LayerPlan:
        plan = LayerPlan()
        classifier = PathClassifier(self._rules, enabled=policy.sensitive_protection_enabled)
        if not classifier.enabled:
            logger.warning("sensitive path protection is DISABLED for this run")

        self._base(plan)
        plan.add_bind(policy.home_root, MountKind.RO_BIND, Phase.HOME_LOCKDOWN)
        self._home_sensitive(plan, policy, classifier)
        self._config_unlock(plan, policy)
        self._workdir_unlock(plan, policy)
        self._workdir_sensitive(plan, policy, classifier)
        self._env_block(plan, policy)
        for directory in policy.ro_directories:
            plan.add_bind(directory, MountKind.RO_BIND, Phase.RO_DIRECTORIES)
        self._auxiliary(plan, policy)

        plan.sensitive_scans = classifier.scan_count
        for phase in Phase:
            targets = plan.phase_targets(phase)
            if targets:
                logger.info("phase %s: %d operation(s)", phase.value, len(targets))
        return plan

    def _base(self, plan: LayerPlan) -> None:
        plan.add(Path(ROOT_PATH), MountKind.RO_BIND, Phase.BASE)
        plan.add(Path(DEV_PATH), MountKind.DEV, Phase.BASE)
        if self._dev_pts:
            plan.add(Path(DEV_PTS_PATH), MountKind.DEV_BIND, Phase.BASE)
        plan.add(Path(PROC_PATH), MountKind.PROC, Phase.BASE)
        plan.add(Path(TMP_PATH), MountKind.OPAQUE_MASK, Phase.BASE)

    def _home_sensitive(self, plan: LayerPlan, policy: Policy, classifier: PathClassifier) -> None:
        if not classifier.enabled:
            plan.skipped_phases.append(Phase.HOME_SENSITIVE)
            return
        result = classifier.scan(policy.home_root, self._home_scan_depth, include_named=True)
        self._apply_scan(plan, result, Phase.HOME_SENSITIVE)

    def _config_unlock(self, plan: LayerPlan, policy: Policy) -> None:
        pattern = policy.tool_config_glob
        if not pattern:
            plan.skipped_phases.append(Phase.CONFIG_UNLOCK)
            return
        try:
            with os.scandir(policy.home_root) as iterator:
                names = sorted(entry.name for entry in iterator)
        except OSError as exc:
            plan.report(Phase.CONFIG_UNLOCK, policy.home_root, exc.strerror or str(exc))
            return
        for name in names:
            if not fnmatchcase(name, pattern):
                continue
            config_path = policy.home_root / name
            if not config_path.exists():
                continue
            if plan.unlock(config_path, Phase.CONFIG_UNLOCK):
                plan.report(
                    Phase.CONFIG_UNLOCK,
                    config_path,
                    "tool config path matches a sensitive rule; unlocked read-write anyway",
                )
                logger.warning("tool config path %s overrides its sensitive mask", config_path)

    def _workdir_unlock(self, plan: LayerPlan, policy: Policy) -> None:
        work_root = policy.work_root
        for masked, kind in plan.active_masks.items():
            if kind is MountKind.OPAQUE_MASK and masked in work_root.parents:
                plan.report(
                    Phase.WORKDIR_UNLOCK,
                    work_root,
                    f"working directory lies inside masked directory {masked}",
                )
        if work_root == policy.home_root or work_root in policy.home_root.parents:
            plan.report(
                Phase.WORKDIR_UNLOCK,
                work_root,
                "working directory contains the home directory; home is writable",
            )
        plan.add_bind(work_root, MountKind.RW_BIND, Phase.WORKDIR_UNLOCK)

    def _workdir_sensitive(
        self, plan: LayerPlan, policy: Policy, classifier: PathClassifier
    ) -> None:
        if not classifier.enabled:
            plan.skipped_phases.append(Phase.WORKDIR_SENSITIVE)
            return
        if any(masked in policy.work_root.parents for masked in _opaque_masks(plan)):
            self._mask_entries(plan, policy.work_root, Phase.WORKDIR_SENSITIVE)
            return
        result = classifier.scan(
            policy.work_root,
            self._work_scan_depth,
            include_named=False,
            prune=_opaque_masks(plan),
        )
        self._apply_scan(plan, result, Phase.WORKDIR_SENSITIVE)

    def _mask_entries(self, plan: LayerPlan, directory: Path, phase: Phase) -> None:
        """Mask every existing entry of ``directory``.

        Used when the working directory sits inside a sensitive directory: the
        whole subtree is sensitive there, and only new files stay visible.
        """

        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda item: item.name)
        except OSError as exc:
            plan.report(phase, directory, exc.strerror or str(exc))
            return
        for entry in entries:
            path = Path(entry.path)
            try:
                kind = MountKind.OPAQUE_MASK if entry.is_dir() else MountKind.NULL_FILE_MASK
            except OSError as exc:
                plan.report(phase, path, exc.strerror or str(exc))
                continue
            plan.add_mask(path, kind, phase)

    def _env_block(self, plan: LayerPlan, policy: Policy) -> None:
        if not policy.env_protection_enabled:
            plan.skipped_phases.append(Phase.ENV_BLOCK)
            return
        env_classifier = PathClassifier(self._env_rules)
        result = env_classifier.scan(
            policy.work_root,
            self._work_scan_depth,
            include_named=False,
            prune=_opaque_masks(plan),
        )
        self._apply_scan(plan, result, Phase.ENV_BLOCK)

    def _auxiliary(self, plan: LayerPlan, policy: Policy) -> None:
        target = policy.auxiliary_mount
        if target is None:
            plan.skipped_phases.append(Phase.AUXILIARY)
            return
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            plan.report(Phase.AUXILIARY, target, f"cannot create directory: {exc.strerror or exc}")
            logger.warning("skipping auxiliary mount %s: %s", target, exc)
            return
        for directory in policy.ro_directories:
            if directory == target or target in directory.parents:
                plan.report(
                    Phase.AUXILIARY,
                    directory,
                    f"read-only directory is writable again under auxiliary mount {target}",
                )
                logger.warning("auxiliary mount %s re-exposes read-only %s", target, directory)
        plan.add_bind(target, MountKind.RW_BIND, Phase.AUXILIARY)

    def _apply_scan(self, plan: LayerPlan, result: ScanResult, phase: Phase) -> None:
        for directory in result.directories:
            plan.add_mask(directory, MountKind.OPAQUE_MASK, phase)
        for file_path in result.files:
            plan.add_mask(file_path, MountKind.NULL_FILE_MASK, phase)
        for issue in result.issues:
            plan.report(phase, issue.path, issue.reason)


def _opaque_masks(plan: LayerPlan) -> tuple[Path, ...]:
    return tuple(
        target for target, kind in plan.active_masks.items() if kind is MountKind.OPAQUE_MASK
    )


__all__ = [
    "LayerBuilder",
    "LayerPlan",
    "MountKind",
    "MountOperation",
    "Phase",
    "PlanIssue",
]
