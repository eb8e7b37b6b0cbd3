from __future__ import annotations

"""Data structures that form the *knowledge* backbone of crawl-graph.

Snapshots captured by the crawler are reduced to immutable `FeatureVector`s,
wrapped into `Node`s and linked by `Edge`s inside an `ExplorationGraphStore`.
The store owns the authoritative collections; every mutation goes through it.
"""

import threading
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple
import uuid
import networkx as nx


@dataclass(frozen=True)
class FeatureVector:
    """Canonical numeric/boolean summary of one page snapshot."""

    url: Optional[str]
    title: Optional[str]
    element_count: int = 0
    interactive_element_count: int = 0
    form_element_count: int = 0
    media_element_count: int = 0
    has_screenshot: bool = False
    is_stats_page: bool = False
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class ActionDescriptor:
    """What the crawler did to move from one captured state to the next."""

    type: str = "click"
    selector: str = ""
    text: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "ActionDescriptor":
        if isinstance(data, ActionDescriptor):
            return data
        if not isinstance(data, dict):
            return cls()
        return cls(
            type=str(data.get("type") or "click"),
            selector=str(data.get("selector") or ""),
            text=str(data.get("text") or ""),
        )


@dataclass
class Node:
    """A unique page state, identified by its fingerprint."""

    node_id: str
    features: FeatureVector
    fingerprint: str = ""
    is_entry_point: bool = False
    pruned: bool = False
    cluster_id: Optional[str] = None
    visit_count: int = 1
    # element node-type tags in document order, used for structural similarity
    element_types: Tuple[str, ...] = ()
    interaction_count: int = 0
    accessibility_score: float = 0.0
    performance_score: float = 0.0
    represented_by: Optional[str] = None
    prune_reason: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        fv = self.features
        return {
            "id": self.node_id,
            "url": fv.url,
            "title": fv.title,
            "elementCount": fv.element_count,
            "interactiveElementCount": fv.interactive_element_count,
            "formElementCount": fv.form_element_count,
            "mediaElementCount": fv.media_element_count,
            "hasScreenshot": fv.has_screenshot,
            "isStatsPage": fv.is_stats_page,
            "timestamp": fv.timestamp,
            "isEntryPoint": self.is_entry_point,
            "pruned": self.pruned,
            "clusterId": self.cluster_id,
            "visitCount": self.visit_count,
            "fingerprint": self.fingerprint,
            "elementTypes": list(self.element_types),
            "interactionCount": self.interaction_count,
            "accessibilityScore": self.accessibility_score,
            "performanceScore": self.performance_score,
            "representedBy": self.represented_by,
            "pruneReason": self.prune_reason,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Node":
        fv = FeatureVector(
            url=data.get("url"),
            title=data.get("title"),
            element_count=int(data.get("elementCount", 0)),
            interactive_element_count=int(data.get("interactiveElementCount", 0)),
            form_element_count=int(data.get("formElementCount", 0)),
            media_element_count=int(data.get("mediaElementCount", 0)),
            has_screenshot=bool(data.get("hasScreenshot", False)),
            is_stats_page=bool(data.get("isStatsPage", False)),
            timestamp=data.get("timestamp"),
        )
        return cls(
            node_id=data["id"],
            features=fv,
            fingerprint=data.get("fingerprint", ""),
            is_entry_point=bool(data.get("isEntryPoint", False)),
            pruned=bool(data.get("pruned", False)),
            cluster_id=data.get("clusterId"),
            visit_count=int(data.get("visitCount", 1)),
            element_types=tuple(data.get("elementTypes", ())),
            interaction_count=int(data.get("interactionCount", 0)),
            accessibility_score=float(data.get("accessibilityScore", 0.0)),
            performance_score=float(data.get("performanceScore", 0.0)),
            represented_by=data.get("representedBy"),
            prune_reason=data.get("pruneReason"),
        )


@dataclass
class Edge:
    """A recorded transition between two captured nodes."""

    source: str
    target: str
    action: ActionDescriptor = field(default_factory=ActionDescriptor)
    weight: float = 1.0
    timestamp: Optional[float] = None
    edge_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.edge_id,
            "from": self.source,
            "to": self.target,
            "action": asdict(self.action),
            "weight": self.weight,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Edge":
        return cls(
            source=data["from"],
            target=data["to"],
            action=ActionDescriptor.from_json(data.get("action")),
            weight=float(data.get("weight", 1.0)),
            timestamp=data.get("timestamp"),
            edge_id=data.get("id") or uuid.uuid4().hex,
        )


@dataclass(frozen=True)
class Cluster:
    """A group of nodes judged functionally equivalent.

    Clusters are recomputed every mitigation cycle and replaced wholesale; a
    cluster object is never edited after construction.
    """

    cluster_id: str
    member_ids: Tuple[str, ...]
    representative_id: str
    mean_pairwise_similarity: float = 1.0

    def __post_init__(self) -> None:
        if not self.member_ids:
            raise ValueError(f"cluster {self.cluster_id} has no members")
        if self.representative_id not in self.member_ids:
            raise ValueError(
                f"representative {self.representative_id} is not a member of {self.cluster_id}"
            )

    @property
    def size(self) -> int:
        return len(self.member_ids)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.cluster_id,
            "members": list(self.member_ids),
            "representative": self.representative_id,
            "size": self.size,
            "similarity": self.mean_pairwise_similarity,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Cluster":
        return cls(
            cluster_id=data["id"],
            member_ids=tuple(data["members"]),
            representative_id=data["representative"],
            mean_pairwise_similarity=float(data.get("similarity", 1.0)),
        )


class ExplorationGraphStore:
    """Owns the Node/Edge/Cluster collections of one exploration graph.

    Nodes and edges live in a `networkx.MultiDiGraph` (parallel edges are kept
    until the pruner deduplicates them). All mutations take the store lock, so
    several crawl workers can feed the same store; `lock` can also be held by
    a caller to group several operations into one critical section.
    """

    def __init__(self) -> None:
        self._g: nx.MultiDiGraph = nx.MultiDiGraph()
        self._fingerprints: Dict[str, str] = {}
        self._clusters: Dict[str, Cluster] = {}
        self._pruned: Dict[str, Node] = {}
        self.lock = threading.RLock()

    # --- node helpers -----------------------------------------------------
    def add_node(self, node: Node) -> Node:
        with self.lock:
            existing = self.get_node(node.node_id)
            if existing is not None:
                return existing
            self._g.add_node(node.node_id, obj=node)
            if node.fingerprint:
                self._fingerprints[node.fingerprint] = node.node_id
            # a previously pruned state that comes back is live again
            self._pruned.pop(node.node_id, None)
            return node

    def get_node(self, node_id: str) -> Optional[Node]:
        if node_id in self._g:
            return self._g.nodes[node_id]["obj"]
        return None

    def nodes(self) -> List[Node]:
        """Live nodes in first-seen order."""
        return [data["obj"] for _, data in self._g.nodes(data=True)]

    def node_ids(self) -> List[str]:
        return list(self._g.nodes)

    def __len__(self) -> int:
        return self._g.number_of_nodes()

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._g

    def resolve_fingerprint(self, fingerprint: str) -> Optional[str]:
        """Return the live node standing for `fingerprint`, if any.

        A fingerprint whose node was pruned in favour of another node resolves
        to that node, following `represented_by` links.
        """
        with self.lock:
            node_id = self._fingerprints.get(fingerprint)
            if node_id is None:
                return None
            return self.resolve_node_id(node_id)

    def resolve_node_id(self, node_id: str) -> Optional[str]:
        """Map a possibly pruned node id onto the live node representing it."""
        with self.lock:
            seen: set[str] = set()
            current: Optional[str] = node_id
            while current is not None and current not in seen:
                if current in self._g:
                    return current
                seen.add(current)
                pruned = self._pruned.get(current)
                current = pruned.represented_by if pruned else None
            return None

    @property
    def pruned_nodes(self) -> Dict[str, Node]:
        return dict(self._pruned)

    # --- edge helpers -----------------------------------------------------
    def add_edge(self, edge: Edge) -> Edge:
        with self.lock:
            if edge.source not in self._g or edge.target not in self._g:
                raise KeyError(f"edge {edge.source} -> {edge.target} references an unknown node")
            self._g.add_edge(edge.source, edge.target, key=edge.edge_id, obj=edge)
            return edge

    def edges(self) -> List[Edge]:
        return [data["obj"] for _, _, _, data in self._g.edges(keys=True, data=True)]

    def edge_count(self) -> int:
        return self._g.number_of_edges()

    # --- cluster helpers --------------------------------------------------
    def clusters(self) -> List[Cluster]:
        return list(self._clusters.values())

    def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        return self._clusters.get(cluster_id)

    # ------------------------------------------------------------------
    # atomic replacement -------------------------------------------------

    def staged(
        self,
        nodes: List[Node],
        edges: List[Edge],
        clusters: List[Cluster],
        pruned: List[Node],
    ) -> "ExplorationGraphStore":
        """Build a detached store holding the given collections.

        Used to prepare the outcome of a mitigation cycle without touching
        this store; `adopt` then swaps it in.
        """
        other = ExplorationGraphStore()
        membership: Dict[str, str] = {}
        for cluster in clusters:
            for member_id in cluster.member_ids:
                membership[member_id] = cluster.cluster_id
        for node in nodes:
            other._g.add_node(node.node_id, obj=replace(node, cluster_id=membership.get(node.node_id)))
        for edge in edges:
            if edge.source in other._g and edge.target in other._g:
                other._g.add_edge(edge.source, edge.target, key=edge.edge_id, obj=edge)
        other._clusters = {c.cluster_id: c for c in clusters}
        other._pruned = dict(self._pruned)
        for node in pruned:
            other._pruned[node.node_id] = node
        other._fingerprints = dict(self._fingerprints)
        for node in other.nodes():
            if node.fingerprint:
                other._fingerprints[node.fingerprint] = node.node_id
        return other

    def adopt(self, other: "ExplorationGraphStore") -> None:
        """Replace this store's contents with `other`'s in one step."""
        with self.lock:
            self._g, self._fingerprints, self._clusters, self._pruned = (
                other._g,
                other._fingerprints,
                other._clusters,
                other._pruned,
            )

    def clear(self) -> None:
        with self.lock:
            self.adopt(ExplorationGraphStore())

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def to_json(self) -> Dict[str, Any]:
        """Serialize the graph into the export structure."""
        with self.lock:
            return {
                "nodes": [n.to_json() for n in self.nodes()],
                "edges": [e.to_json() for e in self.edges()],
                "clusters": [c.to_json() for c in self.clusters()],
                "prunedNodes": [n.to_json() for n in self._pruned.values()],
            }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ExplorationGraphStore":
        S = cls()
        for meta in data.get("nodes", []):
            S.add_node(Node.from_json(meta))
        for meta in data.get("edges", []):
            edge = Edge.from_json(meta)
            # exported graphs never dangle, but hand-edited ones might
            if edge.source in S and edge.target in S:
                S.add_edge(edge)
        for meta in data.get("clusters", []):
            cluster = Cluster.from_json(meta)
            S._clusters[cluster.cluster_id] = cluster
        for meta in data.get("prunedNodes", []):
            node = Node.from_json(meta)
            S._pruned[node.node_id] = node
            if node.fingerprint and node.fingerprint not in S._fingerprints:
                S._fingerprints[node.fingerprint] = node.node_id
        return S

    def to_graphml_graph(self) -> nx.MultiDiGraph:
        """Copy of the graph holding only GraphML-serialisable attributes."""
        g_ml = nx.MultiDiGraph()
        for node in self.nodes():
            g_ml.add_node(
                node.node_id,
                url=node.features.url or "",
                title=node.features.title or "",
                elementCount=node.features.element_count,
                isEntryPoint=node.is_entry_point,
                clusterId=node.cluster_id or "",
                visitCount=node.visit_count,
            )
        for edge in self.edges():
            g_ml.add_edge(
                edge.source,
                edge.target,
                key=edge.edge_id,
                action=edge.action.type,
                selector=edge.action.selector,
                weight=edge.weight,
            )
        return g_ml
