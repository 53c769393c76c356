"""Prerequisite chain building.

:class:`ChainBuilder` walks the implicit state graph backwards from a target
status, one ``previousStatus`` at a time, producing the ordered list of
:class:`~impl_planner.models.ChainStep` needed to get from the current
status to the target. Descriptors are loaded lazily through the registry and
loader; every load is preceded by a cache invalidation.

Expected planning outcomes (blocked paths, registry misses, cycles) are
returned as chain content. Only malformed descriptors raise.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from impl_planner.conditions import check_requires, evaluate_conditions, resolve_path
from impl_planner.models import (
    DEFAULT_STATUS,
    BlockedTransition,
    ChainStep,
    ConditionResult,
    ImplicationDescriptor,
    SetupEntry,
    TransitionCheck,
    TransitionConfig,
)
from impl_planner.registry import (
    DescriptorNotFoundError,
    DescriptorSource,
    DiscoveryCache,
    StateRegistry,
)
from impl_planner.selection import get_previous_status, select_setup_entry, select_transition
from impl_planner.snapshot import get_entity_status, get_global_status

logger = logging.getLogger(__name__)

NOT_IN_REGISTRY = "NOT_IN_REGISTRY"
FILE_NOT_FOUND = "FILE_NOT_FOUND"
BLOCKED_BY_CONDITIONS = "BLOCKED_BY_CONDITIONS"
MAX_DETOUR_DEPTH = 20


@dataclass(frozen=True)
class BuildOptions:
    """Per-call options threaded through recursive builds."""

    explicit_event: str | None = None
    current_test_file: str | None = None
    loop_target: str | None = None
    original_target: str | None = None
    is_loop_transition: bool = False
    mark_completed: bool = True


def infer_action_name(status: str) -> str:
    head, *rest = status.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest) + "Via..."


def describe_blocking(blocked: list[BlockedTransition]) -> str:
    parts = []
    for transition in blocked:
        for check in transition.blocked_by:
            parts.append(f"{check.field} (needs {check.expected!r}, got {check.actual!r})")
    return ", ".join(parts) or "unmet conditions"


class ChainBuilder:
    """Builds prerequisite chains against a registry and descriptor loader."""

    def __init__(
        self,
        registry: StateRegistry,
        loader: DescriptorSource,
        discovery: DiscoveryCache | None = None,
        default_status: str = DEFAULT_STATUS,
        max_bfs_iterations: int = 200,
    ) -> None:
        self.registry = registry
        self.loader = loader
        self.discovery = discovery
        self.default_status = default_status
        self.max_bfs_iterations = max_bfs_iterations

    # -- loading -----------------------------------------------------------

    def load(self, implication_id: str) -> ImplicationDescriptor:
        self.loader.invalidate(implication_id)
        return self.loader.load(implication_id)

    def load_status(self, status: str) -> ImplicationDescriptor | None:
        """Descriptor registered for ``status``, or None when unavailable."""
        implication_id = self.registry.lookup(status)
        if implication_id is None:
            return None
        try:
            return self.load(implication_id)
        except DescriptorNotFoundError as e:
            logger.debug("Cannot load %s: %s", implication_id, e)
            return None

    # -- step construction -------------------------------------------------

    def step_for(
        self,
        descriptor: ImplicationDescriptor,
        entry: SetupEntry | None,
        status: str,
        **flags: Any,
    ) -> ChainStep:
        first = descriptor.setup_entries[0] if descriptor.setup_entries else None
        return ChainStep(
            status=status,
            source_class_name=descriptor.name,
            action_name=(entry and entry.action_name) or (first and first.action_name) or "unknown",
            test_file=(entry and entry.test_file) or (first and first.test_file) or "unknown",
            platform=(entry and entry.platform) or descriptor.platform or "unknown",
            entity=descriptor.entity,
            **flags,
        )

    def _step_for_status(
        self,
        status: str,
        snapshot: Mapping[str, Any],
        from_status: str | None = None,
        event: str | None = None,
        **flags: Any,
    ) -> ChainStep:
        """Step for a status reached by search, using its best setup entry."""
        descriptor = self.load_status(status)
        action_name = test_file = None
        platform = "web"
        if descriptor is not None:
            entry = select_setup_entry(descriptor, snapshot)
            if entry is not None:
                action_name, test_file = entry.action_name, entry.test_file
                platform = entry.platform or descriptor.platform or "web"
            elif descriptor.platform:
                platform = descriptor.platform
        return ChainStep(
            status=status,
            source_class_name=self.registry.lookup(status) or "Unknown",
            action_name=action_name or infer_action_name(status),
            test_file=test_file or "unknown",
            platform=platform,
            previous_status=from_status,
            event=event,
            entity=descriptor.entity if descriptor else None,
            **flags,
        )

    @staticmethod
    def _placeholder(status: str, source: str, action: str, error: str) -> ChainStep:
        return ChainStep(
            status=status,
            source_class_name=source,
            action_name=action,
            test_file="unknown",
            platform="unknown",
            load_error=error,
        )

    # -- main recursion ------------------------------------------------------

    def build(
        self,
        descriptor: ImplicationDescriptor,
        current_status: str,
        target_status: str,
        visited: set[str] | None = None,
        is_original_target: bool = True,
        snapshot: Mapping[str, Any] | None = None,
        options: BuildOptions | None = None,
    ) -> list[ChainStep]:
        """Build the chain from ``current_status`` to ``target_status``.

        ``visited`` is shared by every recursive call of one build so a
        status is expanded at most once; the one exception is the loop
        re-entry target, which is emitted as a single pass-through step.
        """
        visited = set() if visited is None else visited
        snapshot = snapshot or {}
        options = options or BuildOptions()

        previous_status = get_previous_status(
            descriptor, snapshot, options.current_test_file, options.explicit_event
        )

        if target_status in visited:
            if options.loop_target == target_status:
                return [self._loop_reentry(
                    descriptor, current_status, target_status, previous_status, snapshot, options
                )]
            logger.warning("Circular dependency detected for %s", target_status)
            return []
        visited.add(target_status)

        direct = None
        if self.discovery is not None:
            direct = self.discovery.find_direct_transition(current_status, target_status)
            if direct and is_original_target:
                logger.debug("Direct transition: %s -> %s (%s)", current_status, target_status, direct["event"])

        chain = self._expand_requirements(descriptor, visited, snapshot, options.loop_target)

        if previous_status:
            steps, previous_status, terminal = self._resolve_previous(
                descriptor, current_status, target_status, previous_status,
                visited, is_original_target, snapshot, options,
            )
            chain.extend(steps)
            if terminal:
                return self._mark_completed(chain, descriptor, current_status, snapshot, options)

        entry = select_setup_entry(
            descriptor, snapshot, options.current_test_file, options.explicit_event
        )
        step = self.step_for(
            descriptor,
            entry,
            target_status,
            complete=current_status == target_status and not options.is_loop_transition,
            is_current=current_status == target_status,
            is_target=is_original_target,
            previous_status=previous_status,
        )
        if direct:
            step.transition_event = direct.get("event")
            step.transition_from = current_status
        chain.append(step)

        return self._mark_completed(chain, descriptor, current_status, snapshot, options)

    def _loop_reentry(
        self,
        descriptor: ImplicationDescriptor,
        current_status: str,
        target_status: str,
        previous_status: str | None,
        snapshot: Mapping[str, Any],
        options: BuildOptions,
    ) -> ChainStep:
        logger.debug("Loop prerequisite: %s (first occurrence)", target_status)
        entry = select_setup_entry(
            descriptor, snapshot, options.current_test_file, options.explicit_event
        )
        return self.step_for(
            descriptor,
            entry,
            target_status,
            complete=current_status == target_status,
            is_current=current_status == target_status,
            is_loop_prerequisite=True,
            previous_status=previous_status,
        )

    def _expand_requirements(
        self,
        descriptor: ImplicationDescriptor,
        visited: set[str],
        snapshot: Mapping[str, Any],
        loop_target: str | None,
    ) -> list[ChainStep]:
        """Sub-chains for global ``status`` and ``entity.field`` requirements."""
        steps: list[ChainStep] = []
        for field_name, required in descriptor.requires.items():
            if field_name == "previousStatus" or field_name.startswith("!"):
                continue

            if field_name == "status" and isinstance(required, str) and required in self.registry:
                global_status = get_global_status(snapshot, self.default_status)
                if global_status != required and required not in visited:
                    logger.debug("Global status requirement: %s -> %s", global_status, required)
                    steps.extend(self._sub_build(required, global_status, visited, snapshot, loop_target))

            elif "." in field_name and isinstance(required, bool):
                entity, attribute = field_name.split(".")[:2]
                state_key = f"{entity}_{attribute}"
                if (
                    state_key in self.registry
                    and resolve_path(snapshot, field_name) != required
                    and state_key not in visited
                ):
                    entity_status = get_entity_status(snapshot, entity, self.default_status)
                    logger.debug("Entity requirement %s: %s -> %s", field_name, entity_status, state_key)
                    steps.extend(self._sub_build(state_key, entity_status, visited, snapshot, loop_target))
        return steps

    def _sub_build(
        self,
        status: str,
        current_status: str,
        visited: set[str],
        snapshot: Mapping[str, Any],
        loop_target: str | None,
    ) -> list[ChainStep]:
        implication_id = self.registry.lookup(status)
        if implication_id is None:
            return [self._placeholder(status, "UNKNOWN", NOT_IN_REGISTRY, "Not in state registry")]
        try:
            descriptor = self.load(implication_id)
        except DescriptorNotFoundError as e:
            logger.error("Failed to load %s: %s", implication_id, e)
            return [self._placeholder(status, implication_id, FILE_NOT_FOUND, str(e))]
        return self.build(
            descriptor, current_status, status, visited, False, snapshot,
            BuildOptions(loop_target=loop_target),
        )

    def _resolve_previous(
        self,
        descriptor: ImplicationDescriptor,
        current_status: str,
        target_status: str,
        previous_status: str,
        visited: set[str],
        is_original_target: bool,
        snapshot: Mapping[str, Any],
        options: BuildOptions,
    ) -> tuple[list[ChainStep], str, bool]:
        """Steps leading to ``previous_status``.

        Returns ``(steps, effective_previous_status, terminal)``; a terminal
        result already ends at the target and must not get its own step.
        """
        original_target = options.original_target or target_status

        if previous_status != original_target and not is_original_target:
            if self.would_path_go_through(previous_status, original_target, set(visited)):
                alternative = self.find_alternative_setup_entry(descriptor, original_target, visited)
                if alternative and alternative.previous_status != previous_status:
                    logger.debug(
                        "Using %s instead of %s to avoid %s",
                        alternative.previous_status, previous_status, original_target,
                    )
                    previous_status = alternative.previous_status or previous_status

        check = self.check_transition_conditions_to_target(previous_status, target_status, snapshot)
        if not check.valid:
            substitute = self._find_unblocked_setup_entry(
                descriptor, previous_status, target_status, original_target, visited, snapshot
            )
            if substitute is not None:
                logger.debug("Transition %s -> %s blocked; using setup entry via %s",
                             previous_status, target_status, substitute)
                previous_status = substitute
            else:
                steps = self._handle_blocked(
                    descriptor, current_status, target_status, previous_status,
                    visited, is_original_target, check, snapshot,
                )
                return steps, previous_status, True

        implication_id = self.registry.lookup(previous_status)
        if implication_id is None:
            logger.error("Status %r not found in state registry", previous_status)
            return [self._placeholder(previous_status, "UNKNOWN", NOT_IN_REGISTRY,
                                      "Not in state registry")], previous_status, False

        can_visit = (
            previous_status not in visited
            or options.loop_target == previous_status
        )
        if not can_visit:
            if options.loop_target is None:
                logger.warning("Circular dependency detected for %s", previous_status)
            return [], previous_status, False

        try:
            previous = self.load(implication_id)
        except DescriptorNotFoundError as e:
            logger.error("Implication file not found for %s", implication_id)
            return [self._placeholder(previous_status, implication_id, FILE_NOT_FOUND,
                                      str(e))], previous_status, False

        transition = select_transition(
            previous, target_status, descriptor.platform,
            explicit_event=options.explicit_event, snapshot=snapshot,
        )
        previous_chain = self.build(
            previous, current_status, previous_status, visited, False, snapshot,
            BuildOptions(
                explicit_event=transition.event if transition else None,
                loop_target=options.loop_target,
                original_target=original_target,
                mark_completed=False,
            ),
        )

        if any(step.blocked for step in previous_chain):
            logger.debug("Chain to %s contains blocked steps", previous_status)
            path = self.find_alternative_path(
                current_status, target_status, snapshot,
                blocked_via=previous_status, mark_target=is_original_target,
            )
            if path:
                return path, previous_status, True

        return previous_chain, previous_status, False

    def _handle_blocked(
        self,
        descriptor: ImplicationDescriptor,
        current_status: str,
        target_status: str,
        previous_status: str,
        visited: set[str],
        is_original_target: bool,
        check: TransitionCheck,
        snapshot: Mapping[str, Any],
    ) -> list[ChainStep]:
        """Search around a guard-blocked edge, else emit a blocked step."""
        logger.debug("Transition %s -> %s blocked: %s",
                     previous_status, target_status, describe_blocking(check.blocked_transitions))

        before = self.state_before_blocked(previous_status, snapshot)
        search_from = before or current_status
        path = self.find_alternative_path(
            search_from, target_status, snapshot,
            blocked_via=previous_status, mark_target=is_original_target,
        )
        if path:
            steps: list[ChainStep] = []
            if before and before != current_status:
                steps.extend(self._build_chain_to_state(current_status, before, snapshot, set(visited)))
            steps.extend(path)
            return steps

        blocked = ChainStep(
            status=target_status,
            source_class_name=descriptor.name,
            action_name=BLOCKED_BY_CONDITIONS,
            test_file="N/A",
            platform=descriptor.platform or "unknown",
            is_target=is_original_target,
            entity=descriptor.entity,
            previous_status=previous_status,
            blocked=True,
            blocked_reason=(
                f"Transition from {previous_status} requires conditions not met: "
                f"{describe_blocking(check.blocked_transitions)}. No alternative path found."
            ),
            blocked_transitions=check.blocked_transitions,
        )
        return [blocked]

    def _mark_completed(
        self,
        chain: list[ChainStep],
        descriptor: ImplicationDescriptor,
        current_status: str,
        snapshot: Mapping[str, Any],
        options: BuildOptions,
    ) -> list[ChainStep]:
        if not options.mark_completed:
            return chain

        if not options.is_loop_transition:
            index = next(
                (i for i, s in enumerate(chain)
                 if s.status == current_status and not s.is_loop_prerequisite),
                -1,
            )
            for step in chain[: index + 1]:
                if not step.blocked and not step.load_error:
                    step.complete = True

        if descriptor.entity:
            global_status = get_global_status(snapshot, self.default_status)
            global_index = next(
                (i for i, s in enumerate(chain) if s.status == global_status and not s.entity),
                -1,
            )
            for i, step in enumerate(chain):
                if step.entity or step.load_error or step.blocked:
                    continue
                if step.status == global_status or i < global_index:
                    step.complete = True
        return chain

    # -- guard checks --------------------------------------------------------

    @staticmethod
    def _guard(transition: TransitionConfig, snapshot: Mapping[str, Any]) -> ConditionResult:
        if transition.has_block_conditions:
            return evaluate_conditions(transition.conditions, snapshot)
        return check_requires(transition.requires, snapshot)

    def check_transition_conditions_to_target(
        self, source_status: str, target_status: str, snapshot: Mapping[str, Any]
    ) -> TransitionCheck:
        """Is any declared ``source -> target`` transition currently usable?"""
        source = self.load_status(source_status)
        if source is None:
            return TransitionCheck(valid=True, reason="source not available")

        matching = source.exact_transitions_to(target_status)
        if not matching:
            return TransitionCheck(valid=True, no_direct_transition=True)

        blocked: list[BlockedTransition] = []
        for transition in matching:
            result = self._guard(transition, snapshot)
            if result.met:
                return TransitionCheck(valid=True, event=transition.event)
            blocked.append(BlockedTransition(
                event=transition.event,
                from_status=source_status,
                to_status=target_status,
                blocked_by=result.failed_checks(),
            ))
        return TransitionCheck(valid=False, blocked_transitions=blocked)

    def get_valid_outgoing_transitions(
        self, from_status: str, snapshot: Mapping[str, Any]
    ) -> list[TransitionConfig]:
        """Guard-satisfied transitions first, then unguarded; blocked ones dropped."""
        source = self.load_status(from_status)
        if source is None:
            return []
        ranked: list[tuple[int, TransitionConfig]] = []
        for transition in source.transitions:
            if transition.has_block_conditions:
                guarded, met = True, evaluate_conditions(transition.conditions, snapshot).met
            elif transition.requires and any(k != "previousStatus" for k in transition.requires):
                guarded, met = True, check_requires(transition.requires, snapshot).met
            else:
                guarded, met = False, True
            priority = 2 if guarded and met else 1 if not guarded else 0
            if priority:
                ranked.append((priority, transition))
            else:
                logger.debug("%s -> %s (%s) conditions not met",
                             from_status, transition.target, transition.event)
        ranked.sort(key=lambda pair: pair[0], reverse=True)
        return [t for _, t in ranked]

    # -- alternatives --------------------------------------------------------

    def find_alternative_path(
        self,
        from_status: str,
        to_status: str,
        snapshot: Mapping[str, Any],
        blocked_via: str | None = None,
        mark_target: bool = True,
    ) -> list[ChainStep] | None:
        """Breadth-first search over guard-satisfied transitions.

        The first hop into ``blocked_via`` is skipped. Returning to
        ``from_status`` after at least one hop is accepted when the start
        has a usable transition straight to ``to_status``.
        """
        queue: deque[tuple[str, list[ChainStep], frozenset[str]]] = deque(
            [(from_status, [], frozenset([from_status]))]
        )
        iterations = 0
        while queue and iterations < self.max_bfs_iterations:
            iterations += 1
            status, path, seen = queue.popleft()

            for transition in self.get_valid_outgoing_transitions(status, snapshot):
                nxt = transition.target
                if not path and blocked_via and nxt == blocked_via:
                    continue
                if nxt != from_status and nxt in seen:
                    continue

                if nxt == from_status and path:
                    forward = next(
                        (t for t in self.get_valid_outgoing_transitions(from_status, snapshot)
                         if t.target == to_status),
                        None,
                    )
                    if forward is not None:
                        logger.debug("Loop path found back through %s", from_status)
                        return path + [
                            self._step_for_status(from_status, snapshot, status,
                                                  transition.event, is_loop_back=True),
                            self._step_for_status(to_status, snapshot, from_status,
                                                  forward.event, is_target=mark_target),
                        ]

                step = self._step_for_status(
                    nxt, snapshot, status, transition.event,
                    is_target=mark_target and nxt == to_status,
                )
                new_path = path + [step]
                if nxt == to_status:
                    logger.debug("Alternative path: %s", " -> ".join(s.status for s in new_path))
                    return new_path
                queue.append((nxt, new_path, seen | {nxt}))

        logger.debug("No alternative path %s -> %s after %d iterations",
                     from_status, to_status, iterations)
        return None

    def would_path_go_through(
        self, from_status: str, through_status: str, visited: set[str] | None = None
    ) -> bool:
        """Does any setup route into ``from_status`` pass through ``through_status``?"""
        if from_status == through_status:
            return True
        visited = set() if visited is None else visited
        if from_status in visited:
            return False
        visited.add(from_status)

        descriptor = self.load_status(from_status)
        if descriptor is None:
            return False

        predecessors = [e.previous_status for e in descriptor.setup_entries if e.previous_status]
        fallback = descriptor.requires.get("previousStatus")
        if isinstance(fallback, str):
            predecessors.append(fallback)
        for predecessor in predecessors:
            if predecessor == through_status or self.would_path_go_through(
                predecessor, through_status, visited
            ):
                return True
        return False

    def find_alternative_setup_entry(
        self, descriptor: ImplicationDescriptor, avoid_status: str, visited: set[str]
    ) -> SetupEntry | None:
        for entry in descriptor.setup_entries:
            if entry.previous_status and not self.would_path_go_through(
                entry.previous_status, avoid_status, set(visited)
            ):
                return entry
        return None

    def _find_unblocked_setup_entry(
        self,
        descriptor: ImplicationDescriptor,
        blocked_previous: str,
        target_status: str,
        original_target: str,
        visited: set[str],
        snapshot: Mapping[str, Any],
    ) -> str | None:
        for entry in descriptor.setup_entries:
            candidate = entry.previous_status
            if not candidate or candidate == blocked_previous:
                continue
            if candidate != original_target and self.would_path_go_through(
                candidate, original_target, set(visited)
            ):
                continue
            if self.check_transition_conditions_to_target(candidate, target_status, snapshot).valid:
                return candidate
        return None

    def state_before_blocked(self, blocked_status: str, snapshot: Mapping[str, Any]) -> str | None:
        descriptor = self.load_status(blocked_status)
        if descriptor is None:
            return None
        before = get_previous_status(descriptor, snapshot)
        if before and before != blocked_status:
            return before
        return None

    def _build_chain_to_state(
        self, from_status: str, to_status: str, snapshot: Mapping[str, Any], visited: set[str]
    ) -> list[ChainStep]:
        descriptor = self.load_status(to_status)
        if descriptor is None:
            return []
        return self.build(descriptor, from_status, to_status, visited, False, snapshot,
                          BuildOptions(mark_completed=False))

    # -- mandatory detours -------------------------------------------------

    def insert_mandatory_detours(
        self, chain: list[ChainStep], snapshot: Mapping[str, Any]
    ) -> list[ChainStep]:
        """Insert forced detours (out and back) after the states that demand them."""
        if not snapshot or not chain:
            return chain

        result: list[ChainStep] = []
        handled: set[str] = set()
        for index, step in enumerate(chain):
            result.append(step)
            if step.status in handled or step.is_detour or step.is_target or step.blocked:
                continue
            descriptor = self.load_status(step.status)
            if descriptor is None:
                continue
            detour = self.find_mandatory_detour(descriptor, snapshot)
            if detour is None:
                continue
            following = chain[index + 1].status if index + 1 < len(chain) else None
            if detour.target == following:
                continue
            endpoint = self.find_detour_endpoint(detour.target, step.status)
            if endpoint is None:
                continue
            logger.debug("Inserting detour after %s: %s -> ... -> %s",
                         step.status, detour.target, endpoint)
            handled.add(step.status)
            result.extend(self._detour_path(step.status, detour.target, endpoint, snapshot))
        return result

    @staticmethod
    def find_mandatory_detour(
        descriptor: ImplicationDescriptor, snapshot: Mapping[str, Any]
    ) -> TransitionConfig | None:
        """First transition whose plain ``requires`` all equal snapshot values."""
        for transition in descriptor.transitions:
            if transition.requires and all(
                resolve_path(snapshot, k) == v for k, v in transition.requires.items()
            ):
                return transition
        return None

    def find_detour_endpoint(self, detour_start: str, return_to: str) -> str | None:
        """Follow first transitions from ``detour_start`` until one leads back."""
        seen: set[str] = set()
        current: str | None = detour_start
        for _ in range(MAX_DETOUR_DEPTH):
            if current is None or current in seen:
                return None
            seen.add(current)
            descriptor = self.load_status(current)
            if descriptor is None:
                return None
            if any(t.target == return_to for t in descriptor.transitions):
                return current
            if not descriptor.transitions:
                return None
            current = descriptor.transitions[0].target
        return None

    def _detour_path(
        self, from_status: str, first: str, last: str, snapshot: Mapping[str, Any]
    ) -> list[ChainStep]:
        path: list[ChainStep] = []
        seen = {from_status}
        current: str | None = first
        prior = from_status
        while current and current not in seen:
            seen.add(current)
            descriptor = self.load_status(current)
            if descriptor is None:
                break
            entry = select_setup_entry(descriptor, snapshot)
            step = self.step_for(descriptor, entry, current, is_detour=True, previous_status=prior)
            if step.action_name == "unknown":
                step.action_name = f"{current}Via{prior}"
            path.append(step)

            if current == last:
                origin = self.load_status(from_status)
                if origin is not None:
                    back = next((e for e in origin.setup_entries if e.previous_status == last), None)
                    path.append(ChainStep(
                        status=from_status,
                        source_class_name=origin.name,
                        action_name=(back and back.action_name) or f"{from_status}Via{last}",
                        test_file=(back and back.test_file) or "unknown",
                        platform=(back and back.platform) or origin.platform or "web",
                        entity=origin.entity,
                        previous_status=last,
                        is_detour=True,
                        is_return_from_detour=True,
                    ))
                break

            prior = current
            current = next(
                (t.target for t in descriptor.transitions
                 if t.target not in seen and t.target != from_status),
                None,
            )
        return path
