"""Graph builder — constructs the pre-race analysis topology.

Topology:

    START → assemble_roster → route_analysis
               ├── "analyze" → analyze_field ──┐
               └── "skip"    → mark_all_unknown ┴→ aggregate_field → END

The graph is compiled once per monitor and invoked once per event.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from langgraph.graph import END, START, StateGraph

from racesafe.core.grid import GridAnalyzer
from racesafe.graph.nodes import (
    assemble_roster,
    make_aggregate_field,
    make_analyze_field,
    mark_all_unknown,
    route_analysis,
)
from racesafe.graph.state import PreRaceState


def build_pre_race_graph(analyzer: GridAnalyzer, stop: Optional[asyncio.Event] = None):
    """Construct and compile the pre-race graph.

    Args:
        analyzer: Runs the batched per-participant profile lookups.
        stop: Checked between analysis batches; setting it cancels the run.

    Returns:
        A compiled LangGraph application (invoke with ainvoke).
    """
    graph = StateGraph(PreRaceState)

    # ── Register nodes ───────────────────────────────────────────────────
    graph.add_node("assemble_roster", assemble_roster)
    graph.add_node("analyze_field", make_analyze_field(analyzer, stop))
    graph.add_node("mark_all_unknown", mark_all_unknown)
    graph.add_node("aggregate_field", make_aggregate_field(analyzer))

    # ── Edges ────────────────────────────────────────────────────────────
    graph.add_edge(START, "assemble_roster")
    graph.add_conditional_edges(
        "assemble_roster",
        route_analysis,
        {
            "analyze": "analyze_field",
            "skip": "mark_all_unknown",
        },
    )
    graph.add_edge("analyze_field", "aggregate_field")
    graph.add_edge("mark_all_unknown", "aggregate_field")
    graph.add_edge("aggregate_field", END)

    return graph.compile()
