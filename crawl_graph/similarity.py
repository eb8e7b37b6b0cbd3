from __future__ import annotations

"""Pairwise similarity between exploration graph nodes.

The score blends three views of a page:

* feature similarity (40%) -- url, title, element counts and page flags,
* structural similarity (30%) -- overlap of the element-type multisets,
* functional similarity (30%) -- exact agreement of the functional counts.

Every helper treats a missing value as "no evidence of similarity" and
contributes 0 instead of raising.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .knowledge import FeatureVector, Node

FEATURE_WEIGHT = 0.4
STRUCTURAL_WEIGHT = 0.3
FUNCTIONAL_WEIGHT = 0.3

FEATURE_WEIGHTS: Dict[str, float] = {
    "url": 0.3,
    "title": 0.2,
    "element_count": 0.1,
    "interactive_element_count": 0.1,
    "form_element_count": 0.1,
    "media_element_count": 0.1,
    "has_screenshot": 0.05,
    "is_stats_page": 0.05,
}

FUNCTIONAL_FIELDS = (
    "interactive_element_count",
    "form_element_count",
    "media_element_count",
    "is_stats_page",
)


class SimilarityScorer:
    """Symmetric similarity in [0, 1] between two nodes."""

    def __init__(self, separate_hosts: bool = True) -> None:
        # pages on different hosts keep only their feature contribution
        self.separate_hosts = separate_hosts

    # ------------------------------------------------------------------
    def similarity(self, a: Node, b: Node) -> float:
        fa, fb = a.features, b.features
        feature = self.feature_similarity(fa, fb)
        if self.separate_hosts and self._different_hosts(fa.url, fb.url):
            return _clamp(FEATURE_WEIGHT * feature)
        structural = self.structural_similarity(a.element_types, b.element_types)
        functional = self.functional_similarity(fa, fb)
        return _clamp(
            FEATURE_WEIGHT * feature
            + STRUCTURAL_WEIGHT * structural
            + FUNCTIONAL_WEIGHT * functional
        )

    # ------------------------------------------------------------------
    # sub-scores ---------------------------------------------------------

    def feature_similarity(self, fa: FeatureVector, fb: FeatureVector) -> float:
        score = 0.0
        for key, weight in FEATURE_WEIGHTS.items():
            if key == "url":
                score += weight * self.url_similarity(fa.url, fb.url)
            elif key == "title":
                score += weight * self.title_similarity(fa.title, fb.title)
            elif key.endswith("_count"):
                score += weight * numeric_closeness(getattr(fa, key, None), getattr(fb, key, None))
            else:
                va, vb = getattr(fa, key, None), getattr(fb, key, None)
                if va is not None and vb is not None and va == vb:
                    score += weight
        return score / sum(FEATURE_WEIGHTS.values())

    @staticmethod
    def url_similarity(url_a: Optional[str], url_b: Optional[str]) -> float:
        """Shared path segments over the longer path; 0 across hostnames."""
        if not url_a or not url_b:
            return 0.0
        try:
            pa, pb = urlparse(url_a), urlparse(url_b)
        except ValueError:
            return 0.0
        if not pa.hostname or pa.hostname != pb.hostname:
            return 0.0
        parts_a = [p for p in pa.path.split("/") if p]
        parts_b = [p for p in pb.path.split("/") if p]
        longest = max(len(parts_a), len(parts_b))
        if longest == 0:
            return 1.0
        common = sum((Counter(parts_a) & Counter(parts_b)).values())
        return common / longest

    @staticmethod
    def title_similarity(title_a: Optional[str], title_b: Optional[str]) -> float:
        """Case-insensitive token-set overlap, relative to the larger set."""
        if not title_a or not title_b:
            return 0.0
        tokens_a = set(title_a.lower().split())
        tokens_b = set(title_b.lower().split())
        largest = max(len(tokens_a), len(tokens_b))
        if largest == 0:
            return 0.0
        return len(tokens_a & tokens_b) / largest

    @staticmethod
    def structural_similarity(types_a: Optional[Sequence[str]], types_b: Optional[Sequence[str]]) -> float:
        """Multiset Jaccard of element-type tags."""
        types_a = types_a or ()
        types_b = types_b or ()
        if not types_a and not types_b:
            return 1.0
        if not types_a or not types_b:
            return 0.0
        ca, cb = Counter(types_a), Counter(types_b)
        union = sum((ca | cb).values())
        return sum((ca & cb).values()) / union

    @staticmethod
    def functional_similarity(fa: FeatureVector, fb: FeatureVector) -> float:
        matches = 0
        for key in FUNCTIONAL_FIELDS:
            va, vb = getattr(fa, key, None), getattr(fb, key, None)
            if va is not None and vb is not None and va == vb:
                matches += 1
        return matches / len(FUNCTIONAL_FIELDS)

    @staticmethod
    def _different_hosts(url_a: Optional[str], url_b: Optional[str]) -> bool:
        try:
            host_a = urlparse(url_a).hostname if url_a else None
            host_b = urlparse(url_b).hostname if url_b else None
        except ValueError:
            return False
        return bool(host_a and host_b and host_a != host_b)


def numeric_closeness(a: Optional[float], b: Optional[float]) -> float:
    """1 - |a-b| / max(a, b); 1 when both are zero, 0 when either is missing."""
    if a is None or b is None:
        return 0.0
    largest = max(a, b)
    if largest == 0:
        return 1.0 if a == b else 0.0
    return max(0.0, 1.0 - abs(a - b) / largest)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class PairwiseScores:
    """Memoized symmetric pair scores for one mitigation cycle.

    Computing the full matrix is O(n^2); analysis, clustering and cluster means
    all read from the same cache so each pair is scored once per cycle.
    """

    def __init__(self, scorer: SimilarityScorer, nodes: Iterable[Node]) -> None:
        self._scorer = scorer
        self._nodes: Dict[str, Node] = {n.node_id: n for n in nodes}
        self._cache: Dict[Tuple[str, str], float] = {}

    def score(self, a: Node, b: Node) -> float:
        if a.node_id == b.node_id:
            return 1.0
        key = (a.node_id, b.node_id) if a.node_id < b.node_id else (b.node_id, a.node_id)
        if key not in self._cache:
            self._cache[key] = self._scorer.similarity(a, b)
        return self._cache[key]

    def all_pairs(self) -> List[Tuple[Node, Node, float]]:
        nodes = list(self._nodes.values())
        res: List[Tuple[Node, Node, float]] = []
        for i in range(len(nodes)):
            for j in range(i + 1, len(nodes)):
                res.append((nodes[i], nodes[j], self.score(nodes[i], nodes[j])))
        return res

    def mean_similarity(self, members: Sequence[Node]) -> float:
        if len(members) <= 1:
            return 1.0
        total = 0.0
        comparisons = 0
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                total += self.score(members[i], members[j])
                comparisons += 1
        return total / comparisons
