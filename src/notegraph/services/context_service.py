"""Topology-aware context assembly for agents.

Given a tag, a query or both, the assembler resolves a seed set, extracts
the seed subgraph plus its strongest boundary edges, ranks nodes with
weighted PageRank, assigns hub / bridge / periphery roles and trims the
result to a token budget.
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set, Tuple

import networkx as nx

from notegraph.config import NotegraphConfig, config
from notegraph.exceptions import ContextError, ErrorCode, ValidationError
from notegraph.models.context import (
    ContextEdge,
    ContextNode,
    ContextResult,
    ContextSummary,
    NodeDegree,
    NodeRole,
)
from notegraph.models.schema import EdgeStatus, Note, normalize_edge_pair, normalize_tag
from notegraph.observability import traced
from notegraph.services.graph import build_graph
from notegraph.services.search_service import SearchService
from notegraph.services.topology import classify_hubs, trim_to_budget, weighted_pagerank
from notegraph.storage.record_store import RecordStore
from notegraph.utils import preview

logger = logging.getLogger(__name__)

MAX_BRIDGE_HINTS = 5
DOMINANT_TAG_LIMIT = 8
SEED_TAG_LIMIT = 5

EdgeTriple = Tuple[str, str, dict]


def _top_tags(counts: Counter, limit: int) -> List[str]:
    return [tag for tag, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]


def extract_subgraph(
    graph: nx.Graph, seeds: Set[str], max_external: int = 3
) -> Tuple[nx.Graph, List[EdgeTriple], List[EdgeTriple]]:
    """Seed nodes, the edges among them, and each seed's strongest way out.

    Returns:
        The subgraph plus its internal and external edge lists, each edge
        as a canonical ``(source, target, attrs)`` triple.
    """
    subgraph = nx.Graph()
    present = sorted(s for s in seeds if s in graph)
    for node in present:
        subgraph.add_node(node, **graph.nodes[node])

    internal: List[EdgeTriple] = []
    for u, v, data in graph.subgraph(present).edges(data=True):
        source, target = normalize_edge_pair(u, v)
        subgraph.add_edge(source, target, **data)
        internal.append((source, target, data))
    internal.sort(key=lambda e: (e[0], e[1]))

    external: List[EdgeTriple] = []
    for node in present:
        outward = sorted(
            (
                (neighbor, data)
                for neighbor, data in graph[node].items()
                if neighbor not in seeds
            ),
            key=lambda item: (-item[1].get("weight", 0.0), item[0]),
        )
        for neighbor, data in outward[:max_external]:
            if neighbor not in subgraph:
                subgraph.add_node(neighbor, **graph.nodes[neighbor])
            if subgraph.has_edge(node, neighbor):
                continue
            source, target = normalize_edge_pair(node, neighbor)
            subgraph.add_edge(source, target, **data)
            external.append((source, target, data))
    return subgraph, internal, external


class ContextService:
    """Assembles budgeted structural summaries of a neighborhood.

    Args:
        store: Record store.
        search: Search service used for query-seeded requests.
        settings: Configuration; the module-level config by default.
    """

    def __init__(
        self,
        store: RecordStore,
        search: SearchService,
        settings: Optional[NotegraphConfig] = None,
    ) -> None:
        self.store = store
        self.search = search
        self.settings = settings or config

    # =========================================================================
    # Seed resolution
    # =========================================================================

    def _ids_with_tags(self, tags: Iterable[str]) -> Set[str]:
        ids: Set[str] = set()
        for tag in tags:
            ids.update(self.store.notes.ids_with_tag(tag))
        return ids

    def resolve_seeds(self, tag: Optional[str], query: Optional[str]) -> Set[str]:
        """Resolve the seed node set.

        A tag selects every note carrying it, with or without a query. A
        query alone runs semantic search and widens the hits to every note
        sharing a tag common to several of them, falling back to the hits.
        """
        if tag:
            return self._ids_with_tags([tag])

        hits = self.search.semantic_search(
            query, limit=self.settings.semantic_seed_limit
        ).matches
        if not hits:
            return set()
        tag_counts = Counter(t for match in hits for t in match.note.tags)
        shared = sorted(
            t for t, count in tag_counts.items()
            if count >= self.settings.seed_tag_min_frequency
        )
        if shared:
            logger.debug(f"Expanding query seeds through shared tags {shared}")
            return self._ids_with_tags(shared)
        return {match.note.id for match in hits}

    # =========================================================================
    # Assembly
    # =========================================================================

    def _roles(
        self, order: List[str], ranks: Dict[str, float], seeds: Set[str], graph: nx.Graph
    ) -> Dict[str, List[NodeRole]]:
        hub_count = classify_hubs([ranks[node] for node in order])
        hubs = set(order[:hub_count])
        roles: Dict[str, List[NodeRole]] = {}
        for node in order:
            node_roles: List[NodeRole] = []
            if node in hubs:
                node_roles.append(NodeRole.HUB)
            if node in seeds and any(nbr not in seeds for nbr in graph[node]):
                node_roles.append(NodeRole.BRIDGE)
            roles[node] = node_roles or [NodeRole.PERIPHERY]
        return roles

    @staticmethod
    def _bridge_hints(
        node_id: str, seeds: Set[str], graph: nx.Graph, seed_tag: Optional[str]
    ) -> List[str]:
        counts: Counter = Counter()
        for neighbor in graph[node_id]:
            if neighbor in seeds:
                continue
            for tag in graph.nodes[neighbor].get("tags", []):
                if tag != seed_tag:
                    counts[tag] += 1
        return [
            f"{tag} ({counts[tag]} edges)" for tag in _top_tags(counts, MAX_BRIDGE_HINTS)
        ]

    def _context_node(
        self,
        note: Note,
        roles: List[NodeRole],
        rank: float,
        seeds: Set[str],
        graph: nx.Graph,
        seed_tag: Optional[str],
    ) -> ContextNode:
        internal = sum(1 for nbr in graph[note.id] if nbr in seeds)
        external = graph.degree(note.id) - internal
        bridge_to: List[str] = []
        if NodeRole.BRIDGE in roles:
            bridge_to = self._bridge_hints(note.id, seeds, graph, seed_tag)
        return ContextNode(
            id=note.id,
            short_id=note.short_id,
            title=note.title,
            tags=list(note.tags),
            roles=roles,
            pagerank=rank,
            body_preview=preview(note.body, 100),
            degree=NodeDegree(internal=internal, external=external),
            created_at=note.created_at,
            updated_at=note.updated_at,
            bridge_to=bridge_to,
        )

    @staticmethod
    def _context_edges(
        triples: List[EdgeTriple], notes: Dict[str, Note], internal: bool
    ) -> List[ContextEdge]:
        return [
            ContextEdge(
                source_id=source,
                source_title=notes[source].title,
                target_id=target,
                target_title=notes[target].title,
                score=data.get("weight", 0.0),
                edge_type=data.get("edge_type", "semantic"),
                internal=internal,
            )
            for source, target, data in triples
        ]

    @traced("assemble_context")
    def assemble(
        self,
        tag: Optional[str] = None,
        query: Optional[str] = None,
        budget: Optional[int] = None,
    ) -> ContextResult:
        """Build a budgeted context for a tag, a query or both.

        Args:
            tag: Seed tag.
            query: Seed query; with a tag it only labels the result.
            budget: Token budget; ``config.context_budget_tokens`` by default.

        Raises:
            ContextError: If neither tag nor query is given, or nothing
                matches the seed criteria.
            ValidationError: If the budget is not positive.
            SearchError: If a query-only request cannot be embedded.
        """
        seed_tag = normalize_tag(tag) if tag else None
        seed_query = (query or "").strip()
        if not seed_tag and not seed_query:
            raise ContextError(
                "At least one of tag or query is required",
                code=ErrorCode.CONTEXT_SEED_REQUIRED,
            )
        budget = self.settings.context_budget_tokens if budget is None else budget
        if budget <= 0:
            raise ValidationError(
                "Token budget must be positive", field="budget", value=str(budget)
            )

        seeds = self.resolve_seeds(seed_tag, seed_query)
        if not seeds:
            raise ContextError(
                "No notes matched the seed criteria",
                tag=seed_tag,
                query=seed_query,
                code=ErrorCode.CONTEXT_EMPTY_SEED,
            )

        notes = {note.id: note for note in self.store.notes.list_all(include_chunks=True)}
        graph = build_graph(notes.values(), self.store.edges.list_by_status(EdgeStatus.ACCEPTED))
        subgraph, internal, external = extract_subgraph(
            graph, seeds, self.settings.context_max_external_per_seed
        )

        ranks = weighted_pagerank(subgraph)
        order = sorted(subgraph.nodes, key=lambda node: (-ranks[node], node))
        roles = self._roles(order, ranks, seeds, graph)
        nodes = [
            self._context_node(notes[node], roles[node], ranks[node], seeds, graph, seed_tag)
            for node in order
        ]

        hubs = [n for n in nodes if n.is_hub]
        bridges = [n for n in nodes if n.is_bridge and not n.is_hub]
        periphery = [n for n in nodes if not n.is_hub and not n.is_bridge]

        if seed_tag:
            seed_tags = [seed_tag]
        else:
            seed_tags = _top_tags(
                Counter(t for s in seeds if s in notes for t in notes[s].tags), SEED_TAG_LIMIT
            )
        date_range = ""
        if nodes:
            earliest = min(n.created_at for n in nodes)
            latest = max(n.updated_at for n in nodes)
            date_range = f"{earliest:%Y-%m-%d} to {latest:%Y-%m-%d}"

        summary = ContextSummary(
            seed_tags=seed_tags,
            seed_query=seed_query,
            node_count=len(nodes),
            hub_count=len(hubs),
            bridge_count=len(bridges),
            periphery_count=len(periphery),
            internal_edges=len(internal),
            external_edges=len(external),
            dominant_tags=_top_tags(
                Counter(t for n in nodes for t in n.tags), DOMINANT_TAG_LIMIT
            ),
            date_range=date_range,
            budget_tokens=budget,
        )
        result = ContextResult(
            summary=summary,
            hubs=hubs,
            bridges=bridges,
            periphery=periphery,
            periphery_count=len(periphery),
            edges=self._context_edges(internal, notes, True)
            + self._context_edges(external, notes, False),
        )
        result = trim_to_budget(result, budget)
        logger.info(
            f"Assembled context: {summary.node_count} nodes, {summary.hub_count} hubs, "
            f"{summary.bridge_count} bridges, {result.summary.used_tokens}/{budget} tokens"
            + (f", trimmed {[s.value for s in result.trimming_applied]}" if result.trimming_applied else "")
        )
        return result
