from __future__ import annotations

"""Knowledge update: fold each captured snapshot into the exploration graph."""

import logging
import time
from typing import Any, Optional

from .coverage import CoverageAnalyzer
from .knowledge import ActionDescriptor, Edge, ExplorationGraphStore, Node
from .normalizer import SnapshotNormalizer
from .state_matcher import FingerprintEngine

logger = logging.getLogger(__name__)


class KnowledgeMaintainer:
    """Encapsulates the logic for maintaining exploration knowledge.

    Every snapshot is normalized and fingerprinted. An unseen fingerprint
    becomes a new node; a known one only bumps the visit counter of the node
    that owns it. Transitions become edges between the nodes involved.
    """

    def __init__(
        self,
        store: ExplorationGraphStore,
        coverage: CoverageAnalyzer | None = None,
        normalizer: SnapshotNormalizer | None = None,
        fingerprints: FingerprintEngine | None = None,
    ) -> None:
        self._store = store
        self._coverage = coverage or CoverageAnalyzer()
        self._normalizer = normalizer or SnapshotNormalizer()
        self._fingerprints = fingerprints or FingerprintEngine(store)

    @property
    def coverage(self) -> CoverageAnalyzer:
        return self._coverage

    # ------------------------------------------------------------------
    def ingest(
        self,
        snapshot: Any,
        *,
        entry_point: bool = False,
        prev_node_id: Optional[str] = None,
        action: Any = None,
    ) -> Optional[Node]:
        """Add `snapshot` to the graph and return the node standing for it.

        When `prev_node_id` and `action` are given, the transition from the
        previous node is recorded as well. Malformed snapshots are skipped and
        yield None.
        """
        normalized = self._normalizer.normalize(snapshot)
        if normalized is None:
            return None

        fingerprint = self._fingerprints.compute_fingerprint(normalized.features)
        with self._store.lock:
            existing_id = self._fingerprints.resolve(fingerprint)
            if existing_id is not None:
                node = self._store.get_node(existing_id)
                node.visit_count += 1
                node.interaction_count += normalized.interaction_count
                if entry_point or normalized.is_entry_point:
                    node.is_entry_point = True
                logger.debug("Merged snapshot of %s into node %s (visits=%d)",
                             normalized.features.url, node.node_id, node.visit_count)
            else:
                node = self._store.add_node(
                    Node(
                        node_id=self._fingerprints.node_id_for(fingerprint),
                        features=normalized.features,
                        fingerprint=fingerprint,
                        is_entry_point=entry_point or normalized.is_entry_point,
                        element_types=normalized.element_types,
                        interaction_count=normalized.interaction_count,
                        accessibility_score=normalized.accessibility_score,
                        performance_score=normalized.performance_score,
                    )
                )
                logger.debug("New node %s for %s", node.node_id, normalized.features.url)

            self._coverage.observe_state(node.node_id, fingerprint, normalized)

            if prev_node_id is not None and action is not None:
                self.record_transition(prev_node_id, node.node_id, action,
                                       timestamp=normalized.features.timestamp)
        return node

    def record_transition(
        self,
        source_id: str,
        target_id: str,
        action: Any,
        weight: float = 1.0,
        timestamp: Optional[float] = None,
    ) -> Optional[Edge]:
        """Record an edge `source_id -> target_id` triggered by `action`.

        Ids of pruned nodes are mapped onto the node that now represents them;
        when there is none the transition is dropped.
        """
        descriptor = ActionDescriptor.from_json(action)
        with self._store.lock:
            source = self._store.resolve_node_id(source_id)
            target = self._store.resolve_node_id(target_id)
            if source is None or target is None:
                logger.warning("Dropping transition %s -> %s: endpoint no longer in graph",
                               source_id, target_id)
                return None
            edge = self._store.add_edge(
                Edge(
                    source=source,
                    target=target,
                    action=descriptor,
                    weight=weight,
                    timestamp=timestamp if timestamp is not None else time.time() * 1000,
                )
            )
            source_node = self._store.get_node(source)
            source_node.interaction_count += 1
            target_url = self._store.get_node(target).features.url
            self._coverage.observe_interaction(source, descriptor, target_url)
        return edge
