"""Readiness decisions and platform segmentation over a built chain."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from impl_planner.conditions import check_requirement, resolve_path
from impl_planner.models import (
    DEFAULT_PLATFORM_ALIASES,
    ChainStep,
    ImplicationDescriptor,
    MissingField,
    PlatformSegment,
)
from impl_planner.registry import StateRegistry


def is_ready(chain: list[ChainStep], current_status: str, is_loop_transition: bool = False) -> bool:
    """Can the target test run right now?"""
    if any(step.blocked for step in chain):
        return False

    incomplete = [step for step in chain if not step.complete]
    if not incomplete:
        return True

    if is_loop_transition:
        target = next((s for s in incomplete if s.is_target), None)
        return (
            target is not None
            and len(incomplete) == 1
            and current_status == target.previous_status
        )

    if len(incomplete) == 1 and incomplete[0].is_target:
        target = incomplete[0]
        if target.transition_event and target.transition_from:
            return current_status == target.transition_from
        return True

    return False


def find_next_step(chain: list[ChainStep]) -> ChainStep | None:
    """First incomplete step that is not the target."""
    return next((s for s in chain if not s.complete and not s.is_target), None)


def find_missing_fields(
    descriptor: ImplicationDescriptor,
    snapshot: Mapping[str, Any] | None,
    registry: StateRegistry | None = None,
) -> list[MissingField]:
    """Implication-level data requirements the snapshot does not satisfy."""
    snapshot = snapshot or {}
    missing: list[MissingField] = []

    for field_name, required in descriptor.requires.items():
        if field_name == "previousStatus":
            continue
        if field_name == "status" and isinstance(required, str) and registry and required in registry:
            continue

        negated = field_name.startswith("!")
        clean = field_name[1:] if negated else field_name
        actual = resolve_path(snapshot, clean)
        holds = check_requirement(required, actual, snapshot)
        if holds == negated:
            missing.append(MissingField(
                field=clean,
                required=f"NOT {required!r}" if negated else required,
                actual=actual,
            ))

    for field_name in descriptor.required_fields:
        if resolve_path(snapshot, field_name) is None:
            missing.append(MissingField(field=field_name, required="defined", actual="missing"))

    return missing


def is_entity_field(missing: MissingField, registry: StateRegistry | None = None) -> bool:
    """Entity fields are resolvable by the chain rather than by editing data."""
    if missing.field.endswith(".status"):
        return True
    if registry is not None and "." in missing.field and isinstance(missing.required, bool):
        entity, attribute = missing.field.split(".")[:2]
        return f"{entity}_{attribute}" in registry
    return False


def split_missing_fields(
    missing: list[MissingField], registry: StateRegistry | None = None
) -> tuple[list[MissingField], list[MissingField]]:
    """Partition into ``(entity_fields, regular_fields)``."""
    entity = [m for m in missing if is_entity_field(m, registry)]
    regular = [m for m in missing if not is_entity_field(m, registry)]
    return entity, regular


def normalize_platform(platform: str | None, aliases: Mapping[str, str] | None = None) -> str:
    if not platform:
        return "unknown"
    table = DEFAULT_PLATFORM_ALIASES if aliases is None else aliases
    lowered = platform.lower()
    for alias, canonical in table.items():
        if alias.lower() == lowered:
            return canonical
    return lowered


def is_same_platform(
    first: str | None, second: str | None, aliases: Mapping[str, str] | None = None
) -> bool:
    return normalize_platform(first, aliases) == normalize_platform(second, aliases)


def group_by_platform(
    chain: list[ChainStep],
    snapshot: Mapping[str, Any] | None = None,
    descriptor: ImplicationDescriptor | None = None,
    aliases: Mapping[str, str] | None = None,
) -> list[PlatformSegment]:
    """Split the chain into maximal runs of steps sharing a platform.

    A structurally complete segment is re-opened when the descriptor has a
    dotted requirement that the snapshot does not meet and the segment holds
    steps for that requirement's entity.
    """
    segments: list[PlatformSegment] = []
    for step in chain:
        platform = normalize_platform(step.platform, aliases)
        if not segments or segments[-1].platform != platform:
            segments.append(PlatformSegment(platform=platform))
        segments[-1].steps.append(step)
        if not step.complete:
            segments[-1].complete = False

    if descriptor is None or snapshot is None:
        return segments

    unmet_entities = [
        field_name.split(".")[0]
        for field_name, required in descriptor.requires.items()
        if field_name != "previousStatus"
        and not field_name.startswith("!")
        and "." in field_name
        and not check_requirement(required, resolve_path(snapshot, field_name), snapshot)
    ]
    for segment in segments:
        if not segment.complete:
            continue
        for entity in unmet_entities:
            if any(entity in s.status or s.entity == entity for s in segment.steps):
                segment.complete = False
                break
    return segments


def detect_cross_platform(
    chain: list[ChainStep], current_platform: str | None, aliases: Mapping[str, str] | None = None
) -> list[ChainStep]:
    """Incomplete, non-target steps that need a different platform."""
    return [
        step
        for step in chain
        if not step.complete
        and not step.is_target
        and not is_same_platform(current_platform, step.platform, aliases)
    ]
