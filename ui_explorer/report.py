"""Persist a finished run: ``result.json`` plus a GraphML view of the state graph."""

from __future__ import annotations

import json
import logging
import os
from typing import Dict

import networkx as nx

from .knowledge import ExplorationResult, Severity

logger = logging.getLogger(__name__)


def graphml_view(result: ExplorationResult) -> nx.MultiDiGraph:
    """Copy of the state graph with only GraphML-serialisable attributes."""
    g_raw = result.graph.to_networkx()
    g_ml = nx.MultiDiGraph()
    for nid, data in g_raw.nodes(data=True):
        node = data.get("obj")
        if node is None:
            # transition target that was never visited
            g_ml.add_node(nid, visited=False)
            continue
        g_ml.add_node(
            nid,
            visited=True,
            url=node.state.url,
            title=node.state.title,
            viewport=node.state.viewport,
            issues=len(node.issues),
            start=nid in result.graph.start_states,
        )
    for u, v, k, data in g_raw.edges(keys=True, data=True):
        transition = data["obj"]
        g_ml.add_edge(
            u,
            v,
            key=k,
            action=transition.action.describe(),
            selector=transition.action.selector,
            success=transition.success,
            verifications_failed=sum(1 for r in transition.verifications if not r.passed),
        )
    return g_ml


def write_report(result: ExplorationResult, out_dir: str) -> Dict[str, str]:
    os.makedirs(out_dir, exist_ok=True)
    paths = {
        "json": os.path.join(out_dir, "result.json"),
        "graphml": os.path.join(out_dir, "graph.graphml"),
    }
    with open(paths["json"], "w", encoding="utf-8") as fh:
        json.dump(result.to_json(), fh, indent=2, default=str)
    nx.write_graphml(graphml_view(result), paths["graphml"])
    logger.info("Report written to %s", out_dir)
    return paths


def run_failed(result: ExplorationResult) -> bool:
    """A run fails on any failed verification or any critical issue."""
    if result.summary.verifications_failed:
        return True
    return any(issue.severity == Severity.CRITICAL for issue in result.issues)
