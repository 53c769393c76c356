"""Lint rules for a registry's state graph."""

from __future__ import annotations

from impl_planner.models import GraphModel, Issue, IssueType, Severity


def lint_graph(graph: GraphModel, ignored: set[str] | None = None) -> list[Issue]:
    """Run every lint rule over ``graph``.

    Args:
        graph: The registry graph from :func:`impl_planner.graph.build_graph`.
        ignored: Issue messages to suppress.

    Returns:
        Issues ordered by rule, then by state.
    """
    ignored = ignored or set()
    issues: list[Issue] = []

    issues.extend(_find_missing_descriptors(graph))
    issues.extend(_find_broken_transitions(graph))
    issues.extend(_find_unknown_previous_statuses(graph))
    issues.extend(_find_isolated_states(graph))
    issues.extend(_find_dead_ends(graph))

    return [i for i in issues if i.message not in ignored]


def has_errors(issues: list[Issue]) -> bool:
    return any(i.severity == Severity.ERROR for i in issues)


def _find_missing_descriptors(graph: GraphModel) -> list[Issue]:
    return [
        Issue(
            issue_type=IssueType.MISSING_DESCRIPTOR,
            severity=Severity.ERROR,
            message=f'State "{status}" is registered to '
                    f'{graph.states[status].implication_id} but no descriptor file exists',
            states=[status],
        )
        for status in graph.missing_descriptors
    ]


def _find_broken_transitions(graph: GraphModel) -> list[Issue]:
    """Declared transitions whose target is not a registered state."""
    issues: list[Issue] = []
    for t in graph.transitions:
        if t.kind != "transition" or t.to_state in graph.states:
            continue
        issues.append(Issue(
            issue_type=IssueType.BROKEN_TRANSITION,
            severity=Severity.ERROR,
            message=f'Transition "{t.event}" from "{t.from_state}" targets '
                    f'unregistered state "{t.to_state}"',
            states=[t.from_state, t.to_state],
            events=[t.event],
        ))
    return issues


def _find_unknown_previous_statuses(graph: GraphModel) -> list[Issue]:
    issues: list[Issue] = []
    for t in graph.transitions:
        if t.kind != "setup" or t.from_state in graph.states:
            continue
        issues.append(Issue(
            issue_type=IssueType.UNKNOWN_PREVIOUS_STATUS,
            severity=Severity.ERROR,
            message=f'Setup for "{t.to_state}" needs previous status '
                    f'"{t.from_state}", which is not registered',
            states=[t.to_state, t.from_state],
            events=[t.event],
        ))
    return issues


def _find_isolated_states(graph: GraphModel) -> list[Issue]:
    """States with no inbound and no outbound edges."""
    touched = {t.from_state for t in graph.transitions} | {t.to_state for t in graph.transitions}
    missing = set(graph.missing_descriptors)
    return [
        Issue(
            issue_type=IssueType.ISOLATED_STATE,
            severity=Severity.WARNING,
            message=f'State "{label}" has no incoming or outgoing transitions',
            states=[label],
        )
        for label in graph.states
        if label not in touched and label not in missing
    ]


def _find_dead_ends(graph: GraphModel) -> list[Issue]:
    # Terminal states are often intentional.
    return [
        Issue(
            issue_type=IssueType.DEAD_END,
            severity=Severity.INFO,
            message=f'State "{label}" has no outbound transitions',
            states=[label],
        )
        for label in graph.terminal_states
    ]
