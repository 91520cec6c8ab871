"""Graph topology helpers for context assembly.

Everything here is a pure function over its arguments: weighted PageRank,
natural-break hub detection, token estimation and budget trimming.
"""

import math
from dataclasses import replace
from typing import Dict, Sequence

import networkx as nx

from notegraph.models.context import (
    ContextEdge,
    ContextNode,
    ContextResult,
    TrimStage,
)

# Token cost model for an assembled context
BASE_TOKENS = 200
NODE_HEADER_TOKENS = 20
TOKENS_PER_WORD = 4
EDGE_TOKENS = 15
BRIDGE_HINT_TOKENS = 10
COLLAPSED_PERIPHERY_TOKENS = 10

HUB_FALLBACK_FRACTION = 0.15


def weighted_pagerank(
    graph: nx.Graph,
    damping: float = 0.85,
    max_iter: int = 100,
    tol: float = 1e-4,
) -> Dict[str, float]:
    """Power-iteration PageRank where rank flows in proportion to edge weight.

    A node passes rank to each neighbor in proportion to that edge's
    ``weight`` over the node's total edge weight. Rank held by nodes with no
    weighted edges is spread evenly over all nodes, so scores sum to 1 and a
    lone node gets exactly 1.

    Iteration stops after ``max_iter`` rounds or once the summed absolute
    change drops below ``tol``.
    """
    nodes = sorted(graph.nodes)
    n = len(nodes)
    if n == 0:
        return {}

    strength = {
        node: sum(data.get("weight", 1.0) for _, _, data in graph.edges(node, data=True))
        for node in nodes
    }
    ranks = {node: 1.0 / n for node in nodes}

    for _ in range(max_iter):
        dangling = sum(ranks[node] for node in nodes if strength[node] <= 0)
        base = (1.0 - damping) / n + damping * dangling / n
        new_ranks = {node: base for node in nodes}
        for node in nodes:
            if strength[node] <= 0:
                continue
            share = damping * ranks[node] / strength[node]
            for neighbor, data in graph[node].items():
                new_ranks[neighbor] += share * data.get("weight", 1.0)

        delta = sum(abs(new_ranks[node] - ranks[node]) for node in nodes)
        ranks = new_ranks
        if delta < tol:
            break
    return ranks


def classify_hubs(sorted_scores: Sequence[float]) -> int:
    """Return how many of the leading scores are hubs.

    ``sorted_scores`` must be in descending order. The cut falls at the
    largest drop between consecutive scores, looking only at drops that
    start above the median (``sorted_scores[n // 2]``). When no score sits
    above the median the top 15% (at least one) are hubs. A single score
    is always a hub.
    """
    n = len(sorted_scores)
    if n == 0:
        return 0
    if n == 1:
        return 1

    median = sorted_scores[n // 2]
    best_index = -1
    best_gap = -1.0
    for i in range(n - 1):
        if sorted_scores[i] <= median:
            continue
        gap = sorted_scores[i] - sorted_scores[i + 1]
        if gap > best_gap:
            best_gap = gap
            best_index = i

    if best_index < 0:
        return max(1, math.ceil(n * HUB_FALLBACK_FRACTION))
    return best_index + 1


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def estimate_tokens(
    nodes: Sequence[ContextNode],
    edges: Sequence[ContextEdge],
    collapsed_periphery: int = 0,
) -> int:
    """Approximate token cost of rendering a context.

    Args:
        nodes: Nodes that will be listed individually.
        edges: Edges that will be listed.
        collapsed_periphery: Periphery nodes reported only as a count.
    """
    total = BASE_TOKENS
    for node in nodes:
        total += NODE_HEADER_TOKENS + TOKENS_PER_WORD * count_words(node.title)
        total += TOKENS_PER_WORD * count_words(node.body_preview)
        if node.bridge_to:
            total += BRIDGE_HINT_TOKENS
    total += EDGE_TOKENS * len(edges)
    if collapsed_periphery:
        total += COLLAPSED_PERIPHERY_TOKENS
    return total


def _estimate(result: ContextResult) -> int:
    collapsed = result.periphery_count if result.periphery_collapsed else 0
    return estimate_tokens(
        result.hubs + result.bridges + result.periphery, result.edges, collapsed
    )


def trim_to_budget(result: ContextResult, budget: int) -> ContextResult:
    """Drop detail from ``result`` until its estimate fits ``budget``.

    Stages run in order, each only while still over budget: strip body
    previews, keep only edges touching a hub or bridge, collapse the
    periphery to a count. Nothing is reordered and no stage adds tokens.
    When even the last stage leaves the result over budget it is returned
    as is, with every stage recorded.
    """
    result = replace(
        result,
        summary=replace(result.summary, budget_tokens=budget),
        trimming_applied=list(result.trimming_applied),
    )
    used = _estimate(result)

    if used > budget:
        result.hubs = [replace(n, body_preview="") for n in result.hubs]
        result.bridges = [replace(n, body_preview="") for n in result.bridges]
        result.periphery = [replace(n, body_preview="") for n in result.periphery]
        result.trimming_applied.append(TrimStage.STRIP_PREVIEWS)
        used = _estimate(result)

    if used > budget:
        keep = {n.id for n in result.hubs} | {n.id for n in result.bridges}
        result.edges = [
            e for e in result.edges if e.source_id in keep or e.target_id in keep
        ]
        result.trimming_applied.append(TrimStage.HUB_BRIDGE_EDGES_ONLY)
        used = _estimate(result)

    if used > budget:
        result.periphery = []
        result.trimming_applied.append(TrimStage.COLLAPSE_PERIPHERY)
        used = _estimate(result)

    result.summary.used_tokens = used
    return result
