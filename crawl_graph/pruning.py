from __future__ import annotations

"""Graph pruning: bound the exploration graph without losing functional coverage.

The pruner never touches the store. It works on copies of the nodes and edges
it is given and returns a `PruneResult` that the caller commits in one step,
so a reader never sees a half-pruned graph.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .knowledge import Cluster, Edge, Node
from .representative import RepresentativeSelector
from .similarity import PairwiseScores

logger = logging.getLogger(__name__)

RULES = (
    "duplicate_nodes",
    "low_value_nodes",
    "orphan_nodes",
    "duplicate_edges",
    "low_traffic_edges",
    "cluster_overflow_nodes",
)


@dataclass
class PruneReport:
    nodes_before: int = 0
    nodes_after: int = 0
    edges_before: int = 0
    edges_after: int = 0
    removed: Dict[str, int] = field(default_factory=lambda: {rule: 0 for rule in RULES})
    # edges dropped because one of their endpoints went away
    dangling_edges: int = 0
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    def to_json(self) -> Dict[str, object]:
        return {
            "originalNodes": self.nodes_before,
            "prunedNodes": self.nodes_after,
            "originalEdges": self.edges_before,
            "prunedEdges": self.edges_after,
            "removed": dict(self.removed),
            "danglingEdges": self.dangling_edges,
            "timestamp": self.timestamp,
        }


@dataclass
class PruneResult:
    nodes: List[Node]
    edges: List[Edge]
    clusters: List[Cluster]
    pruned: List[Node]
    report: PruneReport


class GraphPruner:
    def __init__(
        self,
        max_cluster_size: int = 10,
        low_value_threshold: float = 0.1,
        low_traffic_threshold: float = 0.1,
        selector: RepresentativeSelector | None = None,
    ) -> None:
        self.max_cluster_size = max_cluster_size
        self.low_value_threshold = low_value_threshold
        self.low_traffic_threshold = low_traffic_threshold
        self._selector = selector or RepresentativeSelector()

    @staticmethod
    def node_value(node: Node) -> float:
        return (
            node.features.element_count * 0.01
            + node.interaction_count * 0.05
            + node.accessibility_score * 0.1
            + node.performance_score * 0.1
        )

    # ------------------------------------------------------------------
    def prune(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        clusters: Sequence[Cluster] = (),
        scores: Optional[PairwiseScores] = None,
    ) -> PruneResult:
        """Apply every pruning rule, in order, to copies of `nodes` and `edges`."""
        report = PruneReport(nodes_before=len(nodes), edges_before=len(edges))
        work_nodes = [replace(n) for n in nodes]
        work_edges = [replace(e) for e in edges]
        pruned: Dict[str, Node] = {}

        def drop(node: Node, rule: str, represented_by: Optional[str] = None) -> None:
            pruned[node.node_id] = replace(
                node, pruned=True, cluster_id=None, prune_reason=rule, represented_by=represented_by
            )
            report.removed[rule] += 1

        # 1. duplicate nodes ---------------------------------------------------
        survivors: Dict[Tuple, Node] = {}
        redirect: Dict[str, str] = {}
        kept: List[Node] = []
        for node in work_nodes:
            key = (node.features.url, node.features.title, node.features.element_count)
            first = survivors.get(key)
            if first is None:
                survivors[key] = node
                kept.append(node)
                continue
            first.is_entry_point = first.is_entry_point or node.is_entry_point
            first.visit_count += node.visit_count
            redirect[node.node_id] = first.node_id
            drop(node, "duplicate_nodes", represented_by=first.node_id)
        work_nodes = kept
        if redirect:
            work_edges = [
                replace(e, source=redirect.get(e.source, e.source), target=redirect.get(e.target, e.target))
                for e in work_edges
            ]
        work_edges = self._attached(work_edges, work_nodes, report)

        # 2. low-value nodes ---------------------------------------------------
        kept = []
        for node in work_nodes:
            if node.is_entry_point or self.node_value(node) > self.low_value_threshold:
                kept.append(node)
            else:
                drop(node, "low_value_nodes")
        work_nodes = kept
        work_edges = self._attached(work_edges, work_nodes, report)

        # 3. orphaned nodes ----------------------------------------------------
        connected = {e.source for e in work_edges} | {e.target for e in work_edges}
        kept = []
        for node in work_nodes:
            if node.is_entry_point or node.node_id in connected:
                kept.append(node)
            else:
                drop(node, "orphan_nodes")
        work_nodes = kept

        # 4. duplicate edges ---------------------------------------------------
        first_edges: Dict[Tuple[str, str], Edge] = {}
        deduped: List[Edge] = []
        for edge in work_edges:
            key = (edge.source, edge.target)
            if key in first_edges:
                first_edges[key].weight += edge.weight
                report.removed["duplicate_edges"] += 1
                continue
            first_edges[key] = edge
            deduped.append(edge)
        work_edges = deduped

        # 5. low-traffic edges -------------------------------------------------
        busy = [e for e in work_edges if e.weight > self.low_traffic_threshold]
        report.removed["low_traffic_edges"] += len(work_edges) - len(busy)
        work_edges = busy

        # 6. oversized clusters ------------------------------------------------
        live = {n.node_id: n for n in work_nodes}
        for cluster in clusters:
            members = [live[m] for m in cluster.member_ids if m in live]
            if len(members) <= self.max_cluster_size:
                continue
            ranked = self._selector.rank(members)
            keep, extra = ranked[: self.max_cluster_size], ranked[self.max_cluster_size:]
            keep_ids = {n.node_id for n in keep}
            stand_in = cluster.representative_id if cluster.representative_id in keep_ids else keep[0].node_id
            for node in extra:
                drop(node, "cluster_overflow_nodes", represented_by=stand_in)
                del live[node.node_id]
            logger.debug(
                "Cluster %s capped at %d members (%d pruned)",
                cluster.cluster_id, self.max_cluster_size, len(extra),
            )
        work_nodes = [n for n in work_nodes if n.node_id in live]
        work_edges = self._attached(work_edges, work_nodes, report)

        new_clusters = self._rebuild_clusters(clusters, live, scores)

        report.nodes_after = len(work_nodes)
        report.edges_after = len(work_edges)
        logger.info(
            "Pruned graph: nodes %d -> %d, edges %d -> %d",
            report.nodes_before, report.nodes_after, report.edges_before, report.edges_after,
        )
        return PruneResult(
            nodes=work_nodes,
            edges=work_edges,
            clusters=new_clusters,
            pruned=list(pruned.values()),
            report=report,
        )

    # ------------------------------------------------------------------
    # helper utils ------------------------------------------------------

    @staticmethod
    def _attached(edges: Iterable[Edge], nodes: Iterable[Node], report: PruneReport) -> List[Edge]:
        """Drop edges whose source or target is no longer present."""
        ids = {n.node_id for n in nodes}
        res = []
        for edge in edges:
            if edge.source in ids and edge.target in ids:
                res.append(edge)
            else:
                report.dangling_edges += 1
        return res

    def _rebuild_clusters(
        self,
        clusters: Sequence[Cluster],
        live: Dict[str, Node],
        scores: Optional[PairwiseScores],
    ) -> List[Cluster]:
        rebuilt: List[Cluster] = []
        for cluster in clusters:
            members = [live[m] for m in cluster.member_ids if m in live]
            if not members:
                continue
            if len(members) == len(cluster.member_ids):
                rebuilt.append(cluster)
                continue
            member_ids = tuple(n.node_id for n in members)
            representative_id = cluster.representative_id
            if representative_id not in member_ids:
                representative_id = self._selector.select_representative(members).node_id
            mean = scores.mean_similarity(members) if scores else cluster.mean_pairwise_similarity
            rebuilt.append(
                Cluster(
                    cluster_id=cluster.cluster_id,
                    member_ids=member_ids,
                    representative_id=representative_id,
                    mean_pairwise_similarity=mean,
                )
            )
        return rebuilt
