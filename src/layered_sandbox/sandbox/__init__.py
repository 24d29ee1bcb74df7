"""
layered-sandbox: policy compiler and executor handoff.

File: src/layered_sandbox/sandbox/__init__.py

Purpose
- Classify sensitive paths, resolve the per-run policy, compile it into an
  ordered mount sequence and hand it to bubblewrap.

Functional requirements
- A masked path stays masked after every later bind that would expose it.
- The sandboxed process can write only to the working directory, unlocked
  tool config paths and the auxiliary socket directory.
"""

from layered_sandbox.sandbox.classifier import (
    Classification,
    PathClassifier,
    ScanIssue,
    ScanResult,
)
from layered_sandbox.sandbox.errors import (
    ExecutorError,
    ExecutorNotFoundError,
    PolicyError,
    PolicyFileError,
    SandboxError,
)
from layered_sandbox.sandbox.executor import (
    ExecutorInvocation,
    compose,
    resolve_command,
    transcript_path,
    wrap_with_transcript,
)
from layered_sandbox.sandbox.layers import (
    LayerBuilder,
    LayerPlan,
    MountKind,
    MountOperation,
    Phase,
    PlanIssue,
)
from layered_sandbox.sandbox.policy import (
    NetworkMode,
    Policy,
    ResolutionIssue,
    RoResolution,
    build_policy,
    read_policy_file,
    resolve_ro_directories,
)
from layered_sandbox.sandbox.rules import (
    RuleKind,
    SensitiveRule,
    SensitiveRuleSet,
    default_rule_set,
    env_rule_set,
)
from layered_sandbox.sandbox.sandbox_manager import SandboxManager, SandboxRunResult

__all__ = [
    "Classification",
    "ExecutorError",
    "ExecutorInvocation",
    "ExecutorNotFoundError",
    "LayerBuilder",
    "LayerPlan",
    "MountKind",
    "MountOperation",
    "NetworkMode",
    "PathClassifier",
    "Phase",
    "PlanIssue",
    "Policy",
    "PolicyError",
    "PolicyFileError",
    "ResolutionIssue",
    "RoResolution",
    "RuleKind",
    "SandboxError",
    "SandboxManager",
    "SandboxRunResult",
    "ScanIssue",
    "ScanResult",
    "SensitiveRule",
    "SensitiveRuleSet",
    "build_policy",
    "compose",
    "default_rule_set",
    "env_rule_set",
    "read_policy_file",
    "resolve_command",
    "resolve_ro_directories",
    "transcript_path",
    "wrap_with_transcript",
]
