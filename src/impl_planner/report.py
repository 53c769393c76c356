"""Human-readable diagnostics for analyses, chains and condition results."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from impl_planner.models import Analysis, ChainStep, ConditionResult
from impl_planner.readiness import normalize_platform

RULE = "=" * 60


def _fmt(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return repr(value)


def format_step_line(index: int, step: ChainStep, current_status: str | None = None) -> list[str]:
    marker = "[x]" if step.complete else "[>]" if step.is_target else "[ ]"
    suffix = " <- complete" if step.complete else " <- target" if step.is_target else ""
    current = " (current)" if step.status == current_status else ""
    tags = [t for t, on in (("loop", step.is_loop_prerequisite), ("detour", step.is_detour),
                            ("blocked", step.blocked)) if on]
    tag_text = f" [{', '.join(tags)}]" if tags else ""
    lines = [f"  {marker} {index}. {step.status}{current}{suffix}{tag_text}"]
    if not step.complete and not step.is_target:
        lines.append(f"      Action: {step.action_name}")
        lines.append(f"      Test:   {step.test_file}")
        lines.append(f"      Platform: {step.platform}")
    if step.load_error:
        lines.append(f"      Error: {step.load_error}")
    return lines


def format_chain(chain: list[ChainStep], current_status: str | None = None) -> str:
    lines: list[str] = []
    for i, step in enumerate(chain, 1):
        lines.extend(format_step_line(i, step, current_status))
    return "\n".join(lines)


def format_not_ready_error(analysis: Analysis) -> str:
    """Explain why a test is not ready and what to run next."""
    lines = [RULE, "TEST NOT READY - PREREQUISITES NOT MET", RULE, "", "Status:"]
    lines.append(f"  Current: {analysis.current_status}")
    lines.append(f"  Target:  {analysis.target_status}")
    if analysis.is_loop_transition:
        lines.append(f"  Loop: needs {analysis.previous_status} first")

    if analysis.missing_fields:
        lines += ["", "Missing requirements:"]
        for missing in analysis.missing_fields:
            lines.append(
                f"  - {missing.field}: required={_fmt(missing.required)}, actual={_fmt(missing.actual)}"
            )

    lines += ["", "Full path to target:"]
    lines.append(format_chain(analysis.chain, analysis.current_status))

    blocked = analysis.blocked_steps
    if blocked:
        lines += ["", "BLOCKED TRANSITIONS:"]
        for step in blocked:
            lines.append(f"  {step.status}:")
            lines.append(f"  Reason: {step.blocked_reason}")
            for transition in step.blocked_transitions:
                lines.append(f"  Event {transition.event}:")
                for check in transition.blocked_by:
                    lines.append(
                        f"    x {check.field}: need {_fmt(check.expected)}, have {_fmt(check.actual)}"
                    )
        lines += ["", "Fix: update the test data to match the required conditions,",
                  "or run a different test that matches the current data."]

    if analysis.next_step:
        lines += ["", f"Next step: {analysis.next_step.status}"]
        lines.append(f"  Action: {analysis.next_step.action_name}")
        lines.append(f"  Test:   {analysis.next_step.test_file}")

    lines.append(RULE)
    return "\n".join(lines)


def format_cross_platform_message(
    chain: list[ChainStep],
    current_platform: str | None,
    aliases: Mapping[str, str] | None = None,
) -> str:
    """List the remaining steps, per platform, that must be run by hand."""
    lines = [RULE, "CROSS-PLATFORM PREREQUISITES DETECTED", RULE, ""]
    lines.append("Cannot auto-execute prerequisites across platforms.")
    lines.append(f"  Current test platform: {normalize_platform(current_platform, aliases)}")
    lines += ["", "Run these in order:", ""]
    for step in chain:
        if step.complete:
            continue
        marker = ">" if step.is_target else "-"
        lines.append(f"{marker} {step.status} ({normalize_platform(step.platform, aliases)})")
        if not step.is_target:
            lines.append(f"    {step.test_file}")
    lines.append(RULE)
    return "\n".join(lines)


def format_step_conditions(result: ConditionResult) -> str:
    """One line per failed check of a condition evaluation."""
    if result.met:
        return "conditions met"
    failed = result.failed_checks()
    if not failed:
        return f"conditions not met{': ' + result.error if result.error else ''}"
    return "\n".join(
        f"{c.field} {c.operator or 'equals'} {_fmt(c.expected)} (actual: {_fmt(c.actual)})"
        for c in failed
    )
