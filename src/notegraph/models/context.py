"""Result types for context assembly."""
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import List


class NodeRole(str, Enum):
    """Role of a node within an assembled context. Hub and bridge can coexist."""

    HUB = "hub"
    BRIDGE = "bridge"
    PERIPHERY = "periphery"


class TrimStage(str, Enum):
    """Budget reductions, in the order they are applied."""

    STRIP_PREVIEWS = "strip_previews"
    HUB_BRIDGE_EDGES_ONLY = "hub_bridge_edges_only"
    COLLAPSE_PERIPHERY = "collapse_periphery"


@dataclass
class NodeDegree:
    """Neighbor counts in the full graph, split by seed membership."""

    internal: int = 0
    external: int = 0


@dataclass
class ContextNode:
    id: str
    short_id: str
    title: str
    tags: List[str]
    roles: List[NodeRole]
    pagerank: float
    body_preview: str
    degree: NodeDegree
    created_at: datetime.datetime
    updated_at: datetime.datetime
    # "tag (N edges)" hints for the clusters a bridge connects to
    bridge_to: List[str] = field(default_factory=list)

    @property
    def is_hub(self) -> bool:
        return NodeRole.HUB in self.roles

    @property
    def is_bridge(self) -> bool:
        return NodeRole.BRIDGE in self.roles


@dataclass
class ContextEdge:
    source_id: str
    source_title: str
    target_id: str
    target_title: str
    score: float
    edge_type: str
    # False for boundary edges leading out of the seed set
    internal: bool = True


@dataclass
class ContextSummary:
    seed_tags: List[str]
    seed_query: str
    node_count: int
    hub_count: int
    bridge_count: int
    periphery_count: int
    internal_edges: int
    external_edges: int
    dominant_tags: List[str]
    date_range: str
    budget_tokens: int
    used_tokens: int = 0


@dataclass
class ContextResult:
    """Budgeted structural summary of a neighborhood.

    ``periphery`` is emptied when the periphery was collapsed to a count;
    ``periphery_count`` always holds the number of periphery nodes.
    """

    summary: ContextSummary
    hubs: List[ContextNode] = field(default_factory=list)
    bridges: List[ContextNode] = field(default_factory=list)
    periphery: List[ContextNode] = field(default_factory=list)
    periphery_count: int = 0
    edges: List[ContextEdge] = field(default_factory=list)
    trimming_applied: List[TrimStage] = field(default_factory=list)

    @property
    def periphery_collapsed(self) -> bool:
        return TrimStage.COLLAPSE_PERIPHERY in self.trimming_applied

    @property
    def over_budget(self) -> bool:
        return self.summary.used_tokens > self.summary.budget_tokens
