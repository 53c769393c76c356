"""Graphviz DOT export for registry graphs and planned chains."""

from __future__ import annotations

from impl_planner.models import ChainStep, GraphModel


def export_dot(graph: GraphModel) -> str:
    """Export a GraphModel as a Graphviz DOT string."""
    lines = ["digraph implications {", "  rankdir=LR;", ""]

    if graph.entry_points:
        entry_ids = " ".join(f'"{_escape(s)}"' for s in graph.entry_points)
        lines.append(f"  node [shape=doublecircle]; {entry_ids};")

    if graph.terminal_states:
        terminal_ids = " ".join(f'"{_escape(s)}"' for s in graph.terminal_states)
        lines.append(f"  node [shape=box, style=bold]; {terminal_ids};")

    if graph.missing_descriptors:
        missing_ids = " ".join(f'"{_escape(s)}"' for s in graph.missing_descriptors)
        lines.append(f"  node [shape=ellipse, style=dashed]; {missing_ids};")

    lines.append("  node [shape=ellipse, style=solid];")
    lines.append("")

    for t in graph.transitions:
        attrs = [f'label="{_escape(t.event)}"']
        if t.kind == "setup":
            attrs.append("style=dotted")
        elif t.guarded:
            attrs.append("style=dashed")
        lines.append(
            f'  "{_escape(t.from_state)}" -> "{_escape(t.to_state)}" [{", ".join(attrs)}];'
        )

    lines.append("}")
    return "\n".join(lines)


def export_chain_dot(chain: list[ChainStep]) -> str:
    """Export a prerequisite chain as a left-to-right DOT path."""
    lines = ["digraph chain {", "  rankdir=LR;", "  node [shape=box];", ""]
    for i, step in enumerate(chain):
        style = "filled" if step.complete else "bold" if step.is_target else "solid"
        color = "red" if step.blocked else "black"
        label = f"{_escape(step.status)}\\n{_escape(step.action_name)}"
        lines.append(f'  s{i} [label="{label}", style={style}, color={color}];')
    for i in range(1, len(chain)):
        event = chain[i].event or ""
        lines.append(f'  s{i - 1} -> s{i} [label="{_escape(event)}"];')
    lines.append("}")
    return "\n".join(lines)


def _escape(text: str) -> str:
    """Escape a string for DOT format."""
    return text.replace('"', '\\"').replace("\n", "\\n")
