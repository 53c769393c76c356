"""Orchestration façade: analysis, readiness enforcement and step execution.

:class:`TestPlanner` wires the registry, descriptor loader and chain builder
together. ``analyze`` is pure planning; ``check_or_throw`` and ``preflight``
additionally drive a :class:`~impl_planner.runner.StepRunner` through the
missing prerequisites and raise when the target still cannot run.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

from impl_planner.chain import BuildOptions, ChainBuilder
from impl_planner.conditions import check_requirement, resolve_path
from impl_planner.models import (
    Analysis,
    ChainStep,
    ExecutionContext,
    ImplicationDescriptor,
    MissingField,
    PlannerConfig,
    PlatformPrerequisite,
    PlatformSegment,
    RequirementMismatch,
    TransitionCheck,
)
from impl_planner.readiness import (
    find_missing_fields,
    find_next_step,
    group_by_platform,
    is_ready,
    normalize_platform,
    split_missing_fields,
)
from impl_planner.registry import (
    DescriptorSource,
    DiscoveryCache,
    ImplicationLoader,
    StateRegistry,
)
from impl_planner.report import format_cross_platform_message, format_not_ready_error
from impl_planner.runner import StepRunner
from impl_planner.selection import (
    events_match,
    extract_event_from_filename,
    get_previous_status,
    select_setup_entry,
)
from impl_planner.snapshot import (
    SnapshotStore,
    get_current_status,
    merge_change_log,
    merge_into,
)

logger = logging.getLogger(__name__)

_CONTEXT_PREFIX = "ctx.data."


class PlannerError(Exception):
    """Base class for orchestration failures."""


class PrerequisitesNotMetError(PlannerError):
    """The target test cannot run and the prerequisites were not executed."""

    def __init__(self, analysis: Analysis, message: str | None = None) -> None:
        super().__init__(message or format_not_ready_error(analysis))
        self.analysis = analysis


class BlockedPathError(PlannerError):
    """Every known path to the target is blocked by unmet conditions."""

    def __init__(self, analysis: Analysis) -> None:
        super().__init__(format_not_ready_error(analysis))
        self.analysis = analysis


class CrossPlatformError(PlannerError):
    """Remaining prerequisites need a platform the runner cannot drive."""

    def __init__(self, segments: list[PlatformSegment], message: str) -> None:
        super().__init__(message)
        self.segments = segments


class MissingTestDataError(PlannerError):
    """Action arguments reference snapshot fields that are not defined."""

    def __init__(self, fields: list[str]) -> None:
        super().__init__(f"Missing required test data fields: {', '.join(fields)}")
        self.fields = fields


class TestPlanner:
    """Plans and enforces the prerequisites of implication-driven tests."""

    __test__ = False

    def __init__(
        self,
        registry: StateRegistry,
        loader: DescriptorSource,
        discovery: DiscoveryCache | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self.registry = registry
        self.loader = loader
        self.config = config or PlannerConfig()
        self.builder = ChainBuilder(
            registry,
            loader,
            discovery,
            default_status=self.config.default_status,
            max_bfs_iterations=self.config.max_bfs_iterations,
        )

    @classmethod
    def from_config(cls, config: PlannerConfig, project_root: Path) -> TestPlanner:
        """Build a planner from files referenced by a project config."""
        registry = StateRegistry.from_file(project_root / config.registry_path)
        loader = ImplicationLoader([project_root / d for d in config.implications_dirs])
        discovery = DiscoveryCache.from_file(project_root / config.discovery_cache_path)
        return cls(registry, loader, discovery, config)

    # -- analysis ------------------------------------------------------------

    def analyze(
        self,
        descriptor: ImplicationDescriptor,
        snapshot: Mapping[str, Any] | None,
        current_test_file: str | None = None,
        explicit_event: str | None = None,
    ) -> Analysis:
        """Decide whether ``descriptor``'s test can run against ``snapshot``.

        The snapshot is never mutated; repeated calls with the same inputs
        produce equal results.
        """
        view = merge_change_log(snapshot)
        default = self.config.default_status
        current = get_current_status(view, descriptor.entity, default)
        target = descriptor.target_status
        entry = select_setup_entry(descriptor, view, current_test_file, explicit_event)
        previous = get_previous_status(descriptor, view, current_test_file, explicit_event)
        observer = bool(entry and entry.is_observer)

        if observer and current == target:
            logger.debug("Observer mode: already at %s", target)
            step = self.builder.step_for(
                descriptor, entry, target,
                complete=True, is_current=True, is_target=True, is_observer=True,
                previous_status=previous,
            )
            return Analysis(
                ready=True,
                current_status=current,
                target_status=target,
                previous_status=previous,
                is_loop_transition=False,
                chain=[step],
                is_observer_mode=True,
            )

        is_loop = not observer and current == target and bool(previous) and previous != current
        if previous and is_loop:
            logger.debug("Loop transition: at %s, must come from %s", current, previous)
            chain = self._loop_chain(descriptor, current, previous, view, current_test_file)
        else:
            chain = self.builder.build(
                descriptor, current, target, set(), True, view,
                BuildOptions(explicit_event=explicit_event, current_test_file=current_test_file),
            )

        chain = self.builder.insert_mandatory_detours(chain, view)

        missing = find_missing_fields(descriptor, view, self.registry)
        entity_fields, regular_fields = split_missing_fields(missing, self.registry)

        ready = is_ready(chain, current, is_loop) and not regular_fields
        return Analysis(
            ready=ready,
            current_status=current,
            target_status=target,
            previous_status=previous,
            is_loop_transition=is_loop,
            missing_fields=missing,
            chain=chain,
            next_step=find_next_step(chain),
            steps_remaining=sum(1 for s in chain if not s.complete),
            is_observer_mode=observer,
            entity_fields=entity_fields,
            regular_fields=regular_fields,
        )

    def _loop_chain(
        self,
        descriptor: ImplicationDescriptor,
        current: str,
        previous: str,
        view: Mapping[str, Any],
        current_test_file: str | None,
    ) -> list[ChainStep]:
        target = descriptor.target_status
        entry = select_setup_entry(descriptor, view, current_test_file)
        source = self.builder.load_status(previous)

        if source is None:
            logger.warning("No implication available for loop predecessor %s", previous)
            chain = [ChainStep(
                status=previous,
                source_class_name=self.registry.lookup(previous) or "UNKNOWN",
                action_name="unknown",
                test_file="unknown",
                platform="unknown",
                load_error="Implication not available",
            )]
        else:
            chain = self.builder.build(
                source, current, previous, set(), False, view,
                BuildOptions(loop_target=target, original_target=target, is_loop_transition=True),
            )

        chain.append(self.builder.step_for(
            descriptor, entry, target, is_target=True, previous_status=previous,
        ))
        return chain

    def build_prerequisite_chain(
        self,
        descriptor: ImplicationDescriptor,
        current_status: str,
        target_status: str | None = None,
        snapshot: Mapping[str, Any] | None = None,
        explicit_event: str | None = None,
    ) -> list[ChainStep]:
        """Raw chain from ``current_status`` to the descriptor's target."""
        return self.builder.build(
            descriptor,
            current_status,
            target_status or descriptor.target_status,
            set(),
            True,
            merge_change_log(snapshot),
            BuildOptions(explicit_event=explicit_event),
        )

    def missing_fields(
        self, descriptor: ImplicationDescriptor, snapshot: Mapping[str, Any] | None
    ) -> list[MissingField]:
        return find_missing_fields(descriptor, merge_change_log(snapshot), self.registry)

    # -- requirement diagnostics ---------------------------------------------

    def check_current_test_requires(
        self,
        descriptor: ImplicationDescriptor,
        snapshot: Mapping[str, Any] | None,
        current_test_file: str | None = None,
    ) -> list[RequirementMismatch]:
        """Setup and source-transition requirements the data does not meet."""
        view = merge_change_log(snapshot)
        event = extract_event_from_filename(current_test_file)
        entry = select_setup_entry(descriptor, view, current_test_file, event)
        mismatches: list[RequirementMismatch] = []

        if entry is not None:
            setup_requires = dict(entry.requires or {})
            for source, requires in (("setup-condition", entry.conditions), ("setup", setup_requires)):
                if not isinstance(requires, Mapping) or "blocks" in requires:
                    continue
                for field_name, required in requires.items():
                    if field_name in ("previousStatus", "status") or field_name.endswith(".status"):
                        continue
                    clean = field_name.lstrip("!")
                    actual = resolve_path(view, clean)
                    holds = check_requirement(required, actual, view)
                    if holds == field_name.startswith("!"):
                        mismatches.append(RequirementMismatch(clean, required, actual, source))

        previous = get_previous_status(descriptor, view, current_test_file, event)
        source_descriptor = self.builder.load_status(previous) if previous else None
        if source_descriptor is not None and event:
            for transition in source_descriptor.transitions:
                if not events_match(transition.event, event) or not transition.leads_to(descriptor.target_status):
                    continue
                for field_name, required in (transition.requires or {}).items():
                    if field_name == "previousStatus":
                        continue
                    actual = resolve_path(view, field_name)
                    if not check_requirement(required, actual, view):
                        mismatches.append(RequirementMismatch(
                            field_name, required, actual, "transition",
                            from_status=previous, event=transition.event,
                        ))
        return mismatches

    def can_take_transition_to(
        self, target_status: str, snapshot: Mapping[str, Any] | None
    ) -> TransitionCheck:
        """Is any declared transition into ``target_status`` usable right now?"""
        view = merge_change_log(snapshot)
        descriptor = self.builder.load_status(target_status)
        if descriptor is None:
            return TransitionCheck(valid=False, reason=f"{target_status} is not available")
        previous = get_previous_status(descriptor, view)
        if not previous:
            return TransitionCheck(valid=True, reason="no previous status")
        return self.builder.check_transition_conditions_to_target(previous, target_status, view)

    # -- platform prerequisites ----------------------------------------------

    def platform_prerequisite(self, platform: str | None) -> PlatformPrerequisite | None:
        aliases = self.config.platform_aliases
        wanted = normalize_platform(platform, aliases)
        for name, settings in self.config.platform_prerequisites.items():
            if normalize_platform(name, aliases) == wanted:
                return PlatformPrerequisite(
                    platform=wanted,
                    state=settings["state"],
                    check_field=settings["check_field"],
                    expected=settings.get("expected", True),
                )
        return None

    def ensure_platform_prerequisite(
        self,
        platform: str | None,
        snapshot: dict[str, Any],
        context: ExecutionContext,
        runner: StepRunner | None = None,
        store: SnapshotStore | None = None,
    ) -> None:
        """Reach the platform's prerequisite state when the snapshot lacks it."""
        prereq = self.platform_prerequisite(platform)
        if prereq is None:
            return
        view = merge_change_log(snapshot)
        if check_requirement(prereq.expected, resolve_path(view, prereq.check_field), view):
            logger.debug("Platform prerequisite %s already satisfied", prereq.state)
            return

        logger.info("Platform %s needs %s first", prereq.platform, prereq.state)
        implication_id = self.registry.lookup(prereq.state)
        if implication_id is None:
            raise PlannerError(f"Platform prerequisite {prereq.state!r} is not in the state registry")
        descriptor = self.builder.load(implication_id)

        sub_context = replace(
            context,
            current_test_file=None,
            explicit_event=None,
            skip_platform_prereq=True,
            is_prerequisite_execution=True,
        )
        analysis = self.check_or_throw(descriptor, snapshot, sub_context, runner, store)
        target = next((s for s in analysis.chain if s.is_target), None)
        if target is None or target.complete:
            return
        if runner is None:
            raise PrerequisitesNotMetError(analysis)
        self._execute(target, snapshot, runner, store)

    # -- enforcement ---------------------------------------------------------

    def preflight(
        self,
        descriptor: ImplicationDescriptor,
        snapshot: dict[str, Any],
        context: ExecutionContext | None = None,
        runner: StepRunner | None = None,
        store: SnapshotStore | None = None,
    ) -> Analysis:
        """Platform prerequisite, then :meth:`check_or_throw`."""
        context = context or ExecutionContext()
        if not context.skip_platform_prereq and not context.is_prerequisite_execution:
            platform = context.platform or descriptor.platform
            self.ensure_platform_prerequisite(platform, snapshot, context, runner, store)
        return self.check_or_throw(descriptor, snapshot, context, runner, store)

    def check_or_throw(
        self,
        descriptor: ImplicationDescriptor,
        snapshot: dict[str, Any],
        context: ExecutionContext | None = None,
        runner: StepRunner | None = None,
        store: SnapshotStore | None = None,
    ) -> Analysis:
        """Return a ready analysis, executing prerequisites through ``runner``.

        ``snapshot`` is updated in place with each executed step's result.
        Raises :class:`BlockedPathError`, :class:`CrossPlatformError`,
        :class:`MissingTestDataError` or :class:`PrerequisitesNotMetError`.
        """
        context = context or ExecutionContext()
        event = self._event_for(descriptor, context)
        analysis = self.analyze(descriptor, snapshot, context.current_test_file, event)

        if analysis.current_status == analysis.target_status and not analysis.is_loop_transition:
            logger.info("Already in target state %s", analysis.target_status)
            return analysis if analysis.ready else replace(analysis, ready=True)
        if analysis.ready:
            return analysis

        self._check_action_args(descriptor, snapshot, event)

        if analysis.blocked_steps:
            raise BlockedPathError(analysis)
        if runner is None:
            raise PrerequisitesNotMetError(analysis)

        active_platform = normalize_platform(
            context.platform or descriptor.platform, self.config.platform_aliases
        )
        for _ in range(len(analysis.chain) + 1):
            segments = group_by_platform(
                analysis.chain, merge_change_log(snapshot), descriptor, self.config.platform_aliases
            )
            segment = next((s for s in segments if not s.complete), None)
            if segment is None:
                break

            if segment.platform != active_platform:
                if not runner.supports(segment.platform):
                    message = format_cross_platform_message(
                        analysis.chain, context.platform or descriptor.platform,
                        self.config.platform_aliases,
                    )
                    raise CrossPlatformError([s for s in segments if not s.complete], message)
                logger.info("Switching platform %s -> %s", active_platform, segment.platform)
                runner.end_session(active_platform)
                active_platform = segment.platform

            runnable = [
                s for s in segment.steps
                if not s.complete and not s.is_target and not s.is_loop_prerequisite
            ]
            if not runnable:
                break
            for step in runnable:
                self._execute(step, snapshot, runner, store)

            analysis = self.analyze(descriptor, snapshot, context.current_test_file, event)
            if analysis.ready:
                return analysis
            if analysis.blocked_steps:
                raise BlockedPathError(analysis)

        raise PrerequisitesNotMetError(analysis)

    def _event_for(self, descriptor: ImplicationDescriptor, context: ExecutionContext) -> str | None:
        if context.explicit_event:
            return context.explicit_event
        if context.current_test_file:
            return extract_event_from_filename(context.current_test_file)
        first = descriptor.setup_entries[0] if descriptor.setup_entries else None
        return extract_event_from_filename(first.test_file) if first else None

    def _check_action_args(
        self, descriptor: ImplicationDescriptor, snapshot: Mapping[str, Any], event: str | None
    ) -> None:
        details = descriptor.action_details
        if not details and event:
            own = next((t for t in descriptor.transitions if events_match(t.event, event)), None)
            details = own.action_details if own else None
        if not isinstance(details, Mapping):
            return

        view = merge_change_log(snapshot)
        missing: list[str] = []
        for step in details.get("steps") or []:
            args = step.get("args") or []
            if isinstance(args, str):
                args = [a.strip() for a in args.split(",")]
            for arg in args:
                if isinstance(arg, str) and arg.startswith(_CONTEXT_PREFIX):
                    field_path = arg[len(_CONTEXT_PREFIX):]
                    if resolve_path(view, field_path) is None and field_path not in missing:
                        missing.append(field_path)
        if missing:
            raise MissingTestDataError(missing)

    def _execute(
        self,
        step: ChainStep,
        snapshot: dict[str, Any],
        runner: StepRunner,
        store: SnapshotStore | None,
    ) -> None:
        logger.info("Running prerequisite %s via %s", step.status, step.test_file)
        result = runner.run_step(step, merge_change_log(snapshot))
        merge_into(snapshot, result, step.action_name)
        if store is not None:
            store.record_change(step.action_name, result)
