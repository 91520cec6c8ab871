"""In-memory graph view over the note corpus."""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import networkx as nx

from notegraph.models.schema import Edge, EdgeStatus, Note, edge_identifier

logger = logging.getLogger(__name__)


def build_graph(
    notes: Iterable[Note],
    edges: Iterable[Edge],
    status: Optional[EdgeStatus] = EdgeStatus.ACCEPTED,
) -> nx.Graph:
    """Build a weighted undirected graph from notes and edges.

    Nodes carry ``title``, ``tags``, ``updated_at`` and ``is_chunk``.
    Edges carry ``weight`` (the edge score), ``edge_type`` and ``status``.
    Edges whose status differs from ``status`` are skipped; pass None to
    keep every edge. Edges pointing at unknown notes are skipped too.
    """
    graph = nx.Graph()
    for note in notes:
        graph.add_node(
            note.id,
            title=note.title,
            tags=list(note.tags),
            updated_at=note.updated_at,
            is_chunk=note.is_chunk,
        )

    skipped = 0
    for edge in edges:
        if status is not None and edge.status != status:
            continue
        if edge.source_id not in graph or edge.target_id not in graph:
            skipped += 1
            continue
        graph.add_edge(
            edge.source_id,
            edge.target_id,
            weight=edge.score,
            edge_type=edge.edge_type.value,
            status=edge.status.value,
        )
    if skipped:
        logger.debug(f"Skipped {skipped} edges with endpoints outside the note set")
    return graph


@dataclass(frozen=True)
class PathStep:
    """One note on a path, with the edge that led to it."""

    note_id: str
    title: str
    edge_id: Optional[str] = None
    edge_score: Optional[float] = None
    edge_type: Optional[str] = None


@dataclass
class PathResult:
    found: bool
    steps: List[PathStep] = field(default_factory=list)
    total_score: float = 0.0

    @property
    def hop_count(self) -> int:
        return max(len(self.steps) - 1, 0)

    @property
    def note_ids(self) -> List[str]:
        return [step.note_id for step in self.steps]


def find_path(graph: nx.Graph, source_id: str, target_id: str) -> PathResult:
    """Fewest-hop path between two notes of ``graph``.

    ``total_score`` sums the scores of the edges walked. A note paired
    with itself is a one-step path with no hops. Notes missing from the
    graph, or in different components, give ``found=False``.
    """
    if source_id not in graph or target_id not in graph:
        return PathResult(found=False)
    try:
        nodes = nx.shortest_path(graph, source_id, target_id)
    except nx.NetworkXNoPath:
        return PathResult(found=False)

    steps = [PathStep(note_id=nodes[0], title=graph.nodes[nodes[0]]["title"])]
    total = 0.0
    for previous, current in zip(nodes, nodes[1:]):
        data = graph.edges[previous, current]
        total += data["weight"]
        steps.append(
            PathStep(
                note_id=current,
                title=graph.nodes[current]["title"],
                edge_id=edge_identifier(previous, current),
                edge_score=data["weight"],
                edge_type=data["edge_type"],
            )
        )
    return PathResult(found=True, steps=steps, total_score=total)
