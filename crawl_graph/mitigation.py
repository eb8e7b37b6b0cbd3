from __future__ import annotations

"""The mitigation cycle: analyze -> cluster -> select representatives -> prune -> record coverage."""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .clustering import ClusterBuilder
from .config import MitigationConfig
from .coverage import CoverageAnalyzer
from .knowledge import Cluster, Edge, ExplorationGraphStore, Node
from .knowledge_maintenance import KnowledgeMaintainer
from .normalizer import SnapshotNormalizer
from .pruning import GraphPruner, PruneReport
from .representative import RepresentativeSelector
from .similarity import PairwiseScores, SimilarityScorer
from .state_matcher import FingerprintEngine
from .storage import KeyValueStore, StorageError

logger = logging.getLogger(__name__)


class MitigationState(str, Enum):
    IDLE = "idle"
    MITIGATING = "mitigating"


class ExplosionRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IllegalTransitionError(RuntimeError):
    """The requested lifecycle event is not allowed in the current state."""


# (state, event) -> next state; anything missing is illegal
TRANSITIONS: Dict[tuple, MitigationState] = {
    (MitigationState.IDLE, "start"): MitigationState.MITIGATING,
    (MitigationState.MITIGATING, "finish"): MitigationState.IDLE,
    (MitigationState.MITIGATING, "stop"): MitigationState.IDLE,
    (MitigationState.MITIGATING, "fail"): MitigationState.IDLE,
    (MitigationState.IDLE, "clear"): MitigationState.IDLE,
    (MitigationState.IDLE, "load"): MitigationState.IDLE,
}


@dataclass
class ExplosionAnalysis:
    total_states: int = 0
    similar_states: int = 0
    redundant_states: int = 0
    cluster_candidates: int = 0
    mean_similarity: float = 0.0
    explosion_risk: ExplosionRisk = ExplosionRisk.LOW

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalStates": self.total_states,
            "similarStates": self.similar_states,
            "redundantStates": self.redundant_states,
            "clusterCandidates": self.cluster_candidates,
            "meanSimilarity": self.mean_similarity,
            "explosionRisk": self.explosion_risk.value,
        }


@dataclass
class CycleReport:
    analysis: ExplosionAnalysis
    clusters: List[Cluster] = field(default_factory=list)
    # representatives chosen before pruning, keyed by cluster id
    representatives: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    prune: Optional[PruneReport] = None
    marginal_gain: Dict[str, float] = field(default_factory=dict)
    aborted: bool = False
    aborted_during: Optional[str] = None
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    def to_json(self) -> Dict[str, Any]:
        return {
            "analysis": self.analysis.to_json(),
            "clusters": [c.to_json() for c in self.clusters],
            "representatives": list(self.representatives.values()),
            "prune": self.prune.to_json() if self.prune else None,
            "marginalGain": dict(self.marginal_gain),
            "aborted": self.aborted,
            "abortedDuring": self.aborted_during,
            "timestamp": self.timestamp,
        }


class _CycleAborted(Exception):
    def __init__(self, phase: str) -> None:
        super().__init__(phase)
        self.phase = phase


class StateExplosionMitigator:
    """High-level orchestrator and control surface of the engine.

    The mitigator owns one `ExplorationGraphStore` (injectable), feeds it
    through a `KnowledgeMaintainer` and periodically runs a mitigation cycle
    over it. A cycle prepares its whole outcome on the side and commits it in
    a single swap, so stopping it at any point leaves the graph exactly as the
    previous cycle left it.
    """

    def __init__(
        self,
        store: ExplorationGraphStore | None = None,
        config: MitigationConfig | None = None,
        kv_store: KeyValueStore | None = None,
        coverage: CoverageAnalyzer | None = None,
        scorer: SimilarityScorer | None = None,
    ) -> None:
        self.config = config or MitigationConfig()
        self.store = store if store is not None else ExplorationGraphStore()
        self.coverage = coverage or CoverageAnalyzer()
        self._kv = kv_store
        self._scorer = scorer or SimilarityScorer()
        self._selector = RepresentativeSelector()
        self._builder = ClusterBuilder(self._scorer, self._selector)
        self._pruner = GraphPruner(
            max_cluster_size=self.config.max_cluster_size,
            low_value_threshold=self.config.low_value_threshold,
            low_traffic_threshold=self.config.low_traffic_threshold,
            selector=self._selector,
        )
        self.maintainer = KnowledgeMaintainer(
            self.store,
            coverage=self.coverage,
            normalizer=SnapshotNormalizer(detect_stats_pages=self.config.detect_stats_pages),
            fingerprints=FingerprintEngine(
                self.store, collapse_dynamic_segments=self.config.collapse_dynamic_segments
            ),
        )

        self._state = MitigationState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()

        self.representatives: Dict[str, Dict[str, Any]] = {}
        self.last_analysis: Optional[ExplosionAnalysis] = None
        self.history: List[CycleReport] = []

    # ------------------------------------------------------------------
    # lifecycle ----------------------------------------------------------

    @property
    def state(self) -> MitigationState:
        return self._state

    def _transition(self, event: str) -> MitigationState:
        with self._state_lock:
            nxt = TRANSITIONS.get((self._state, event))
            if nxt is None:
                raise IllegalTransitionError(f"cannot {event} while {self._state.value}")
            logger.debug("Mitigation %s: %s -> %s", event, self._state.value, nxt.value)
            if event == "start":
                # a fresh cycle starts without a pending stop request
                self._stop_requested.clear()
            self._state = nxt
            return nxt

    def start_mitigation(self) -> CycleReport:
        """Run one full mitigation cycle and return its report.

        Raises `IllegalTransitionError` if a cycle is already running and
        `StorageError` if persisting the new graph fails (the in-memory graph
        is then left untouched).
        """
        self._transition("start")
        try:
            with self.store.lock:
                report = self._run_cycle()
        except _CycleAborted as aborted:
            logger.info("Mitigation stopped during %s; graph left unchanged", aborted.phase)
            self._transition("stop")
            report = CycleReport(
                analysis=self.last_analysis or ExplosionAnalysis(),
                aborted=True,
                aborted_during=aborted.phase,
            )
            self.history.append(report)
            return report
        except Exception:
            self._transition("fail")
            raise
        self._transition("finish")
        self.history.append(report)
        return report

    def stop_mitigation(self) -> None:
        """Ask a running cycle to stop; a no-op when idle.

        Safe to call from another thread or from inside a running cycle. The
        cycle notices the request at its next phase boundary.
        """
        with self._state_lock:
            if self._state == MitigationState.MITIGATING:
                self._stop_requested.set()
            else:
                logger.debug("stop_mitigation called while idle")

    def _checkpoint(self, phase: str) -> None:
        if self._stop_requested.is_set():
            raise _CycleAborted(phase)

    def _run_cycle(self) -> CycleReport:
        nodes = self.store.nodes()
        edges = self.store.edges()
        scores = PairwiseScores(self._scorer, nodes)

        analysis = self.analyze(nodes, scores)
        self._checkpoint("analyze")

        clusters = self._builder.cluster(nodes, self.config.cluster_threshold, scores)
        self._checkpoint("cluster")

        representatives = self.select_representatives(clusters)
        self._checkpoint("select_representatives")

        result = self._pruner.prune(nodes, edges, clusters, scores)
        self._checkpoint("prune")

        staged = self.store.staged(result.nodes, result.edges, result.clusters, result.pruned)
        self._checkpoint("commit")
        if self._kv is not None:
            self._persist(staged.to_json())
        self.store.adopt(staged)

        # clusters shrunk by the pruner may have a new representative
        self.representatives = self.select_representatives(result.clusters)

        gain = self.coverage.record_cycle()
        logger.info(
            "Mitigation cycle: %d nodes -> %d (%d clusters, risk %s)",
            analysis.total_states, len(result.nodes), len(result.clusters), analysis.explosion_risk.value,
        )
        return CycleReport(
            analysis=analysis,
            clusters=result.clusters,
            representatives=representatives,
            prune=result.report,
            marginal_gain=gain,
        )

    # ------------------------------------------------------------------
    # phases -------------------------------------------------------------

    def analyze(
        self,
        nodes: Optional[List[Node]] = None,
        scores: Optional[PairwiseScores] = None,
    ) -> ExplosionAnalysis:
        """Estimate explosion risk from node count and the similarity distribution."""
        if nodes is None:
            nodes = self.store.nodes()
        scores = scores or PairwiseScores(self._scorer, nodes)
        pairs = scores.all_pairs()

        analysis = ExplosionAnalysis(total_states=len(nodes))
        candidates: set[str] = set()
        total = 0.0
        for a, b, sim in pairs:
            total += sim
            if sim > self.config.similarity_threshold:
                analysis.similar_states += 1
                candidates.update((a.node_id, b.node_id))
            if sim > self.config.redundancy_threshold:
                analysis.redundant_states += 1
        analysis.cluster_candidates = len(candidates)
        analysis.mean_similarity = total / len(pairs) if pairs else 0.0

        if len(nodes) > self.config.high_risk_node_count:
            risk = ExplosionRisk.HIGH
        elif len(nodes) > self.config.medium_risk_node_count:
            risk = ExplosionRisk.MEDIUM
        else:
            risk = ExplosionRisk.LOW
        # a graph made mostly of look-alikes is exploding regardless of size
        if pairs and analysis.similar_states / len(pairs) >= 0.5 and risk != ExplosionRisk.HIGH:
            risk = ExplosionRisk.HIGH if risk == ExplosionRisk.MEDIUM else ExplosionRisk.MEDIUM
        analysis.explosion_risk = risk

        self.last_analysis = analysis
        return analysis

    def select_representatives(self, clusters: List[Cluster]) -> Dict[str, Dict[str, Any]]:
        """Representative page per cluster, keyed by cluster id."""
        return {c.cluster_id: self._representative_entry(c) for c in clusters}

    @staticmethod
    def _representative_entry(cluster: Cluster) -> Dict[str, Any]:
        return {
            "clusterId": cluster.cluster_id,
            "representative": cluster.representative_id,
            "clusterSize": cluster.size,
            "similarity": cluster.mean_pairwise_similarity,
        }

    # ------------------------------------------------------------------
    # ingestion ----------------------------------------------------------

    def ingest(self, snapshot: Any, **kwargs: Any) -> Optional[Node]:
        return self.maintainer.ingest(snapshot, **kwargs)

    def record_transition(self, source_id: str, target_id: str, action: Any, **kwargs: Any) -> Optional[Edge]:
        return self.maintainer.record_transition(source_id, target_id, action, **kwargs)

    def is_saturated(self) -> bool:
        return self.coverage.is_saturated(self.config.min_marginal_gain, self.config.saturation_window)

    # ------------------------------------------------------------------
    # control surface ----------------------------------------------------

    def export_graph(self) -> Dict[str, Any]:
        return self.store.to_json()

    def get_coverage_statistics(self) -> Dict[str, Dict[str, Any]]:
        return self.coverage.statistics()

    def clear_data(self) -> None:
        self._transition("clear")
        with self.store.lock:
            self.store.clear()
            self.coverage.clear()
            self.representatives.clear()
            self.history.clear()
            self.last_analysis = None

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "isMitigating": self._state == MitigationState.MITIGATING,
            "totalNodes": len(self.store),
            "totalEdges": self.store.edge_count(),
            "totalClusters": len(self.store.clusters()),
            "totalRepresentatives": len(self.representatives),
            "totalPrunedNodes": len(self.store.pruned_nodes),
            "similarityThreshold": self.config.similarity_threshold,
            "clusterThreshold": self.config.cluster_threshold,
            "maxClusterSize": self.config.max_cluster_size,
        }

    def get_mitigation_statistics(self) -> Dict[str, Any]:
        clusters = self.store.clusters()
        sizes = [c.size for c in clusters]
        pruned = self.store.pruned_nodes
        return {
            "clusters": {
                "total": len(clusters),
                "averageSize": sum(sizes) / len(sizes) if sizes else 0,
                "largestCluster": max(sizes) if sizes else 0,
            },
            "representatives": {
                "total": len(self.representatives),
                "selected": list(self.representatives.values()),
            },
            "pruning": {
                "totalPruned": len(pruned),
                "prunedNodes": list(pruned),
            },
            "thresholds": {
                "similarity": self.config.similarity_threshold,
                "cluster": self.config.cluster_threshold,
                "maxClusterSize": self.config.max_cluster_size,
            },
        }

    def export_mitigation_data(self) -> Dict[str, Any]:
        return {
            "clusters": [c.to_json() for c in self.store.clusters()],
            "representatives": list(self.representatives.values()),
            "prunedNodes": list(self.store.pruned_nodes),
            "statistics": self.get_mitigation_statistics(),
            "cycles": [r.to_json() for r in self.history],
            "timestamp": time.time() * 1000,
        }

    # ------------------------------------------------------------------
    # persistence -------------------------------------------------------

    def _persist(self, payload: Dict[str, Any]) -> None:
        if self._kv is None:
            raise StorageError("no key-value store configured")
        self._kv.set(self.config.graph_key, payload)

    def save(self) -> None:
        self._persist(self.store.to_json())

    def load(self) -> bool:
        """Replace the in-memory graph with the persisted one.

        Returns False when nothing is stored under the graph key. A record
        that cannot be parsed raises `StorageError` and leaves the in-memory
        graph as it was.
        """
        if self._kv is None:
            raise StorageError("no key-value store configured")
        self._transition("load")
        data = self._kv.get(self.config.graph_key)
        if data is None:
            return False
        try:
            loaded = ExplorationGraphStore.from_json(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StorageError(f"stored graph under {self.config.graph_key!r} is malformed: {e}") from e
        self.store.adopt(loaded)
        self.representatives = {c.cluster_id: self._representative_entry(c) for c in loaded.clusters()}
        return True
