"""State graph extraction from the registry and its implication descriptors."""

from __future__ import annotations

import logging

import networkx as nx

from impl_planner.models import GraphModel, State, Transition
from impl_planner.registry import DescriptorNotFoundError, DescriptorSource, StateRegistry

logger = logging.getLogger(__name__)


def build_graph(registry: StateRegistry, loader: DescriptorSource) -> GraphModel:
    """Build a GraphModel from every descriptor the registry names.

    Declared ``on`` transitions become edges of kind ``transition``; setup
    entries contribute ``previousStatus -> status`` edges of kind ``setup``
    unless a declared transition already covers them.
    """
    states: dict[str, State] = {}
    transitions: list[Transition] = []
    missing: list[str] = []

    for status, implication_id in registry.items():
        try:
            loader.invalidate(implication_id)
            descriptor = loader.load(implication_id)
        except DescriptorNotFoundError:
            logger.debug("No descriptor for %s (%s)", status, implication_id)
            missing.append(status)
            states[status] = State(label=status, implication_id=implication_id)
            continue

        states[status] = State(
            label=status, implication_id=implication_id, entity=descriptor.entity
        )
        for t in descriptor.transitions:
            transitions.append(Transition(
                event=t.event,
                from_state=status,
                to_state=t.target,
                guarded=t.has_guard,
            ))
        for entry in descriptor.setup_entries:
            if entry.previous_status:
                transitions.append(Transition(
                    event=entry.action_name or "setup",
                    from_state=entry.previous_status,
                    to_state=status,
                    guarded=bool(entry.requires),
                    kind="setup",
                ))

    declared = {(t.from_state, t.to_state) for t in transitions if t.kind == "transition"}
    transitions = [
        t for t in transitions
        if t.kind == "transition" or (t.from_state, t.to_state) not in declared
    ]

    inbound = {t.to_state for t in transitions}
    outbound = {t.from_state for t in transitions}
    entry_points = sorted(s for s in states if s not in inbound and s in outbound)
    terminal_states = sorted(s for s in states if s in inbound and s not in outbound)

    nxg = _to_networkx_internal(states, transitions)
    cycles = [sorted(c) for c in nx.simple_cycles(nxg)]

    return GraphModel(
        states=states,
        transitions=transitions,
        entry_points=entry_points,
        terminal_states=terminal_states,
        cycles=cycles,
        missing_descriptors=sorted(missing),
    )


def to_networkx(graph: GraphModel) -> nx.DiGraph:
    """Convert GraphModel to a NetworkX DiGraph."""
    return _to_networkx_internal(graph.states, graph.transitions)


def reachable_from(graph: GraphModel, status: str) -> set[str]:
    """Statuses reachable from ``status`` along any edge."""
    nxg = to_networkx(graph)
    if status not in nxg:
        return set()
    return set(nx.descendants(nxg, status))


def shortest_route(graph: GraphModel, from_status: str, to_status: str) -> list[str] | None:
    """Shortest route between two statuses over declared edges, ignoring guards."""
    nxg = to_networkx(graph)
    try:
        return list(nx.shortest_path(nxg, from_status, to_status))
    except (nx.NetworkXNoPath, nx.NodeNotFound):
        return None


def graph_to_json(graph: GraphModel) -> dict:
    """Export GraphModel as a JSON-serializable dictionary."""
    return {
        "states": {
            label: {
                "label": label,
                "implication_id": state.implication_id,
                "entity": state.entity,
            }
            for label, state in graph.states.items()
        },
        "transitions": [
            {
                "event": t.event,
                "from_state": t.from_state,
                "to_state": t.to_state,
                "guarded": t.guarded,
                "kind": t.kind,
            }
            for t in graph.transitions
        ],
        "entry_points": graph.entry_points,
        "terminal_states": graph.terminal_states,
        "cycles": graph.cycles,
        "missing_descriptors": graph.missing_descriptors,
    }


def _to_networkx_internal(
    states: dict[str, State], transitions: list[Transition]
) -> nx.DiGraph:
    """Build a networkx DiGraph from states and transitions."""
    g: nx.DiGraph[str] = nx.DiGraph()
    for label in states:
        g.add_node(label)
    for t in transitions:
        g.add_edge(t.from_state, t.to_state, event=t.event, kind=t.kind)
    return g
