"""
Tests for pairwise node similarity
"""

import itertools

import pytest

from crawl_graph.knowledge import FeatureVector, Node
from crawl_graph.similarity import PairwiseScores, SimilarityScorer, numeric_closeness


@pytest.fixture
def scorer():
    return SimilarityScorer()


class TestScenarios:
    def test_same_page_is_near_identical(self, scorer, node_factory):
        a = node_factory("a", url="https://app.test/products", title="Products", element_count=5)
        b = node_factory("b", url="https://app.test/products", title="Products", element_count=5)
        assert scorer.similarity(a, b) >= 0.95

    def test_different_hosts_stay_apart(self, scorer, node_factory):
        a = node_factory("a", url="https://one.test/products", title="Products", element_count=5)
        b = node_factory("b", url="https://two.test/products", title="Products", element_count=5)
        assert scorer.url_similarity(a.features.url, b.features.url) == 0.0
        assert scorer.similarity(a, b) < 0.5

    def test_host_gate_can_be_disabled(self, node_factory):
        a = node_factory("a", url="https://one.test/products", title="Products", element_count=5)
        b = node_factory("b", url="https://two.test/products", title="Products", element_count=5)
        assert SimilarityScorer(separate_hosts=False).similarity(a, b) > 0.5


class TestProperties:
    def _nodes(self, node_factory):
        return [
            node_factory("a", url="https://app.test/", title="Home", element_count=30, interactive_element_count=4),
            node_factory("b", url="https://app.test/items/1", title="Item one", element_count=12),
            node_factory("c", url="https://app.test/items/2", title="Item two", element_count=14,
                         element_types=("a", "div", "img")),
            node_factory("d", url="https://other.test/", title=None, element_count=0, is_stats_page=True),
        ]

    def test_symmetric(self, scorer, node_factory):
        for a, b in itertools.combinations(self._nodes(node_factory), 2):
            assert scorer.similarity(a, b) == pytest.approx(scorer.similarity(b, a))

    def test_bounded(self, scorer, node_factory):
        for a, b in itertools.product(self._nodes(node_factory), repeat=2):
            assert 0.0 <= scorer.similarity(a, b) <= 1.0

    def test_missing_fields_do_not_raise(self, scorer):
        empty = Node(node_id="x", features=FeatureVector(url=None, title=None))
        other = Node(node_id="y", features=FeatureVector(url="not a url", title="T", element_count=3))
        assert 0.0 <= scorer.similarity(empty, other) <= 1.0
        assert scorer.url_similarity(None, "https://app.test/") == 0.0
        assert scorer.title_similarity("", "Home") == 0.0


class TestSubScores:
    def test_url_similarity_counts_shared_segments(self, scorer):
        assert scorer.url_similarity("https://app.test/x/y", "https://app.test/x/z") == 0.5
        assert scorer.url_similarity("https://app.test/", "https://app.test") == 1.0

    def test_title_similarity_is_case_insensitive(self, scorer):
        assert scorer.title_similarity("Home Page", "home") == 0.5
        assert scorer.title_similarity("Home", "HOME") == 1.0

    def test_structural_similarity_is_multiset_jaccard(self, scorer):
        assert scorer.structural_similarity(("a", "a", "b"), ("a", "b")) == pytest.approx(2 / 3)
        assert scorer.structural_similarity((), ()) == 1.0
        assert scorer.structural_similarity(("a",), ()) == 0.0

    def test_numeric_closeness(self):
        assert numeric_closeness(0, 0) == 1.0
        assert numeric_closeness(5, 10) == 0.5
        assert numeric_closeness(None, 3) == 0.0


class CountingScorer(SimilarityScorer):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def similarity(self, a, b):
        self.calls += 1
        return super().similarity(a, b)


class TestPairwiseScores:
    def test_each_pair_scored_once(self, node_factory):
        nodes = [node_factory(n) for n in "abc"]
        scorer = CountingScorer()
        scores = PairwiseScores(scorer, nodes)

        pairs = scores.all_pairs()
        scores.score(nodes[1], nodes[0])
        scores.mean_similarity(nodes)

        assert len(pairs) == 3
        assert scorer.calls == 3

    def test_self_and_singleton(self, node_factory):
        a = node_factory("a")
        scores = PairwiseScores(SimilarityScorer(), [a])
        assert scores.score(a, a) == 1.0
        assert scores.mean_similarity([a]) == 1.0
        assert scores.all_pairs() == []
