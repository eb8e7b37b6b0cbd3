from __future__ import annotations

"""Seed-based grouping of near-duplicate nodes into clusters."""

import logging
from typing import List, Optional, Sequence

from .knowledge import Cluster, Node
from .representative import RepresentativeSelector
from .similarity import PairwiseScores, SimilarityScorer

logger = logging.getLogger(__name__)


class ClusterBuilder:
    """Greedy single-pass clustering.

    Nodes are visited in input order. Each unassigned node seeds a new
    cluster and pulls in every later unassigned node whose similarity to the
    *seed* exceeds the threshold. Membership therefore depends on input order:
    two nodes that are both close to a third may still be split.
    """

    def __init__(
        self,
        scorer: SimilarityScorer | None = None,
        selector: RepresentativeSelector | None = None,
    ) -> None:
        self._scorer = scorer or SimilarityScorer()
        self._selector = selector or RepresentativeSelector()

    def cluster(
        self,
        nodes: Sequence[Node],
        threshold: float,
        scores: Optional[PairwiseScores] = None,
    ) -> List[Cluster]:
        if not nodes:
            return []
        scores = scores or PairwiseScores(self._scorer, nodes)

        groups: List[List[Node]] = []
        assigned: set[str] = set()
        for i, seed in enumerate(nodes):
            if seed.node_id in assigned:
                continue
            assigned.add(seed.node_id)
            group = [seed]
            for other in nodes[i + 1:]:
                if other.node_id in assigned:
                    continue
                if scores.score(seed, other) > threshold:
                    group.append(other)
                    assigned.add(other.node_id)
            groups.append(group)

        clusters: List[Cluster] = []
        for index, group in enumerate(groups):
            representative = self._selector.select_representative(group)
            clusters.append(
                Cluster(
                    cluster_id=f"cluster_{index}",
                    member_ids=tuple(n.node_id for n in group),
                    representative_id=representative.node_id,
                    mean_pairwise_similarity=scores.mean_similarity(group),
                )
            )
        logger.debug("Grouped %d nodes into %d clusters (threshold %.2f)", len(nodes), len(clusters), threshold)
        return clusters
