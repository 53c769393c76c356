"""Core data models for impl-planner."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, NewType

ImplicationId = NewType("ImplicationId", str)

DEFAULT_STATUS = "initial"
OBSERVER_MODES = ("verify", "observer")
DEFAULT_PLATFORM_ALIASES = {
    "playwright": "web",
    "web": "web",
    "cms": "web",
    "dancer": "dancer",
    "clubapp": "clubApp",
    "club": "clubApp",
}


class DescriptorError(Exception):
    """Raised when an implication descriptor has an invalid shape."""


@dataclass(frozen=True)
class SetupEntry:
    """One alternative way to reach an implication's target status."""

    test_file: str | None = None
    action_name: str | None = None
    platform: str | None = None
    previous_status: str | None = None
    requires: dict[str, Any] | None = None
    conditions: dict[str, Any] | None = None
    mode: str | None = None

    @property
    def is_observer(self) -> bool:
        return self.mode in OBSERVER_MODES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SetupEntry:
        if not isinstance(data, Mapping):
            raise DescriptorError(f"Setup entry must be a mapping, got {type(data).__name__}")
        requires = data.get("requires")
        if requires is not None and not isinstance(requires, Mapping):
            raise DescriptorError("Setup entry 'requires' must be a mapping")
        return cls(
            test_file=data.get("testFile"),
            action_name=data.get("actionName"),
            platform=data.get("platform"),
            previous_status=data.get("previousStatus"),
            requires=dict(requires) if requires else None,
            conditions=data.get("conditions"),
            mode=data.get("mode"),
        )


@dataclass(frozen=True)
class TransitionConfig:
    """A single outgoing transition declared in an implication's ``on`` table."""

    event: str
    target: str
    requires: dict[str, Any] | None = None
    conditions: dict[str, Any] | None = None
    platforms: tuple[str, ...] = ()
    is_default: bool = False
    action_details: dict[str, Any] | None = None

    @property
    def has_block_conditions(self) -> bool:
        return bool(self.conditions and self.conditions.get("blocks"))

    @property
    def has_guard(self) -> bool:
        return self.has_block_conditions or bool(self.requires)

    def leads_to(self, status: str) -> bool:
        """Match the target exactly or by a ``_<status>`` suffix."""
        return self.target == status or self.target.endswith(f"_{status}")

    @classmethod
    def from_value(cls, event: str, value: Any) -> TransitionConfig:
        if isinstance(value, str):
            return cls(event=event, target=value)
        if not isinstance(value, Mapping):
            raise DescriptorError(
                f"Transition '{event}' must be a string or mapping, got {type(value).__name__}"
            )
        target = value.get("target")
        if not isinstance(target, str) or not target:
            raise DescriptorError(f"Transition '{event}' has no target")
        requires = value.get("requires")
        return cls(
            event=event,
            target=target,
            requires=dict(requires) if requires else None,
            conditions=value.get("conditions"),
            platforms=tuple(value.get("platforms") or ()),
            is_default=bool(value.get("isDefault", False)),
            action_details=value.get("actionDetails"),
        )


@dataclass(frozen=True)
class ImplicationDescriptor:
    """The declarative preconditions/postconditions of a single test."""

    id: ImplicationId
    target_status: str
    entity: str | None = None
    platform: str | None = None
    setup_entries: tuple[SetupEntry, ...] = ()
    requires: dict[str, Any] = field(default_factory=dict)
    required_fields: tuple[str, ...] = ()
    transitions: tuple[TransitionConfig, ...] = ()
    action_details: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        return str(self.id)

    def transitions_to(self, status: str) -> list[TransitionConfig]:
        return [t for t in self.transitions if t.leads_to(status)]

    def exact_transitions_to(self, status: str) -> list[TransitionConfig]:
        return [t for t in self.transitions if t.target == status]

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], implication_id: str | None = None
    ) -> ImplicationDescriptor:
        """Build a descriptor from its authored form.

        Accepts either a flat mapping or one with a nested ``meta`` section
        holding ``status``/``setup``/``requires``; the ``on`` table may sit
        at either level.
        """
        if not isinstance(data, Mapping):
            raise DescriptorError(f"Descriptor must be a mapping, got {type(data).__name__}")
        meta = data.get("meta") if isinstance(data.get("meta"), Mapping) else data

        ident = implication_id or data.get("id") or data.get("className")
        if not ident:
            raise DescriptorError("Descriptor has no id")

        status = meta.get("status")
        if not isinstance(status, str) or not status:
            raise DescriptorError(f"Descriptor '{ident}' has no status")

        raw_setup = meta.get("setup") or []
        if isinstance(raw_setup, Mapping):
            raw_setup = [raw_setup]
        if not isinstance(raw_setup, list):
            raise DescriptorError(f"Descriptor '{ident}': 'setup' must be a list")

        requires = meta.get("requires") or {}
        if not isinstance(requires, Mapping):
            raise DescriptorError(f"Descriptor '{ident}': 'requires' must be a mapping")

        raw_on = data.get("on", meta.get("on")) or {}
        if not isinstance(raw_on, Mapping):
            raise DescriptorError(f"Descriptor '{ident}': 'on' must be a mapping")

        transitions: list[TransitionConfig] = []
        for event, value in raw_on.items():
            values = value if isinstance(value, list) else [value]
            for single in values:
                transitions.append(TransitionConfig.from_value(str(event), single))

        return cls(
            id=ImplicationId(str(ident)),
            target_status=status,
            entity=meta.get("entity"),
            platform=meta.get("platform"),
            setup_entries=tuple(SetupEntry.from_dict(s) for s in raw_setup),
            requires=dict(requires),
            required_fields=tuple(meta.get("requiredFields") or ()),
            transitions=tuple(transitions),
            action_details=meta.get("actionDetails"),
        )


@dataclass
class CheckResult:
    """Outcome of a single field check."""

    field: str
    expected: Any
    actual: Any
    met: bool
    operator: str | None = None


@dataclass
class ConditionResult:
    """Outcome of evaluating a condition tree, block or ``requires`` map."""

    met: bool
    kind: str = "conditions"
    checks: list[CheckResult] = field(default_factory=list)
    blocks: list[ConditionResult] = field(default_factory=list)
    error: str | None = None

    def failed_checks(self) -> list[CheckResult]:
        failed = [c for c in self.checks if not c.met]
        for block in self.blocks:
            if not block.met:
                failed.extend(block.failed_checks())
        return failed


@dataclass
class BlockedTransition:
    """A declared transition whose guard is not satisfied by the snapshot."""

    event: str
    from_status: str
    to_status: str
    blocked_by: list[CheckResult] = field(default_factory=list)


@dataclass
class TransitionCheck:
    """Whether any declared transition between two statuses is usable."""

    valid: bool
    event: str | None = None
    no_direct_transition: bool = False
    blocked_transitions: list[BlockedTransition] = field(default_factory=list)
    reason: str | None = None


@dataclass
class ChainStep:
    """One step of a prerequisite chain."""

    status: str
    source_class_name: str
    action_name: str
    test_file: str
    platform: str
    complete: bool = False
    is_current: bool = False
    is_target: bool = False
    entity: str | None = None
    previous_status: str | None = None
    event: str | None = None
    blocked: bool = False
    blocked_reason: str | None = None
    blocked_transitions: list[BlockedTransition] = field(default_factory=list)
    is_loop_prerequisite: bool = False
    is_loop_back: bool = False
    is_detour: bool = False
    is_return_from_detour: bool = False
    is_observer: bool = False
    transition_event: str | None = None
    transition_from: str | None = None
    load_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, [])}


@dataclass
class PlatformSegment:
    """A contiguous run of chain steps sharing a normalized platform."""

    platform: str
    steps: list[ChainStep] = field(default_factory=list)
    complete: bool = True


@dataclass
class MissingField:
    """An implication-level data requirement not met by the snapshot."""

    field: str
    required: Any
    actual: Any


@dataclass
class RequirementMismatch:
    """A setup or transition requirement the current test's data does not meet."""

    field: str
    required: Any
    actual: Any
    source: str
    from_status: str | None = None
    event: str | None = None


@dataclass
class Analysis:
    """Result of analysing whether a test's preconditions hold."""

    ready: bool
    current_status: str
    target_status: str
    previous_status: str | None
    is_loop_transition: bool
    missing_fields: list[MissingField] = field(default_factory=list)
    chain: list[ChainStep] = field(default_factory=list)
    next_step: ChainStep | None = None
    steps_remaining: int = 0
    is_observer_mode: bool = False
    entity_fields: list[MissingField] = field(default_factory=list)
    regular_fields: list[MissingField] = field(default_factory=list)

    @property
    def blocked_steps(self) -> list[ChainStep]:
        return [s for s in self.chain if s.blocked]

    def to_dict(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "current_status": self.current_status,
            "target_status": self.target_status,
            "previous_status": self.previous_status,
            "is_loop_transition": self.is_loop_transition,
            "is_observer_mode": self.is_observer_mode,
            "missing_fields": [asdict(f) for f in self.missing_fields],
            "chain": [s.to_dict() for s in self.chain],
            "next_step": self.next_step.to_dict() if self.next_step else None,
            "steps_remaining": self.steps_remaining,
        }


@dataclass(frozen=True)
class ExecutionContext:
    """Execution-mode flags threaded through orchestration calls."""

    platform: str | None = None
    current_test_file: str | None = None
    explicit_event: str | None = None
    is_prerequisite_execution: bool = False
    skip_platform_prereq: bool = False


@dataclass(frozen=True)
class PlatformPrerequisite:
    """A state a platform session must reach before anything else runs."""

    platform: str
    state: str
    check_field: str
    expected: Any = True


@dataclass(frozen=True)
class State:
    """A state in the registry graph."""

    label: str
    implication_id: str | None = None
    entity: str | None = None


@dataclass
class Transition:
    """A transition (edge) in the registry graph."""

    event: str
    from_state: str
    to_state: str
    guarded: bool = False
    kind: str = "transition"


@dataclass
class GraphModel:
    """The registry's complete state graph."""

    states: dict[str, State] = field(default_factory=dict)
    transitions: list[Transition] = field(default_factory=list)
    entry_points: list[str] = field(default_factory=list)
    terminal_states: list[str] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    missing_descriptors: list[str] = field(default_factory=list)


class IssueType(Enum):
    """Types of registry problems found by lint rules."""

    BROKEN_TRANSITION = "broken-transition"
    UNKNOWN_PREVIOUS_STATUS = "unknown-previous-status"
    ISOLATED_STATE = "isolated-state"
    DEAD_END = "dead-end"
    MISSING_DESCRIPTOR = "missing-descriptor"


class Severity(Enum):
    """Severity levels for lint issues."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Issue:
    """A problem identified in the registry."""

    issue_type: IssueType
    severity: Severity
    message: str
    states: list[str] = field(default_factory=list)
    events: list[str] = field(default_factory=list)


@dataclass
class PlannerConfig:
    """Project configuration for impl-planner."""

    version: str = "0.1.0"
    registry_path: str = "tests/implications/.state-registry.json"
    implications_dirs: list[str] = field(default_factory=lambda: ["tests/implications"])
    discovery_cache_path: str = ".impl-planner/cache/discovery-result.json"
    data_path: str = "tests/data/shared.json"
    default_status: str = DEFAULT_STATUS
    max_bfs_iterations: int = 200
    platform_aliases: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PLATFORM_ALIASES))
    platform_prerequisites: dict[str, dict[str, Any]] = field(default_factory=dict)
    runner_command: list[str] = field(default_factory=list)
    runner_timeout: int = 300
    verbose: bool = False
