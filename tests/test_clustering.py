"""
Tests for seed-based clustering and representative selection
"""

import pytest

from crawl_graph.clustering import ClusterBuilder
from crawl_graph.representative import RepresentativeSelector
from crawl_graph.similarity import SimilarityScorer


class TableScorer(SimilarityScorer):
    """Scores looked up from a fixed table of unordered id pairs."""

    def __init__(self, table, default=0.0):
        super().__init__()
        self.table = {frozenset(k): v for k, v in table.items()}
        self.default = default

    def similarity(self, a, b):
        return self.table.get(frozenset((a.node_id, b.node_id)), self.default)


class TestClusterBuilder:
    def test_empty_input(self):
        assert ClusterBuilder().cluster([], 0.7) == []

    def test_near_identical_pages_share_a_cluster(self, node_factory):
        a = node_factory("a", url="https://app.test/products", title="Products", element_count=5)
        b = node_factory("b", url="https://app.test/products", title="Products", element_count=5)
        clusters = ClusterBuilder().cluster([a, b], 0.7)

        assert len(clusters) == 1
        assert set(clusters[0].member_ids) == {"a", "b"}

    def test_cross_host_pages_do_not_cluster(self, node_factory):
        a = node_factory("a", url="https://one.test/products", title="Products", element_count=5)
        b = node_factory("b", url="https://two.test/products", title="Products", element_count=5)
        assert len(ClusterBuilder().cluster([a, b], 0.7)) == 2

    def test_every_node_in_exactly_one_valid_cluster(self, node_factory):
        nodes = [
            node_factory("a", url="https://app.test/items/1", title="Item"),
            node_factory("b", url="https://app.test/items/2", title="Item"),
            node_factory("c", url="https://app.test/about", title="About us", element_count=3),
            node_factory("d", url="https://other.test/", title="Elsewhere", element_count=40),
        ]
        clusters = ClusterBuilder().cluster(nodes, 0.7)

        members = [m for c in clusters for m in c.member_ids]
        assert sorted(members) == ["a", "b", "c", "d"]
        for c in clusters:
            assert c.representative_id in c.member_ids
            assert 0.0 <= c.mean_pairwise_similarity <= 1.0
        assert [c.cluster_id for c in clusters] == [f"cluster_{i}" for i in range(len(clusters))]

    def test_idempotent(self, node_factory):
        nodes = [node_factory(n, url=f"https://app.test/items/{i}", title="Item") for i, n in enumerate("abcde")]
        builder = ClusterBuilder()
        first = builder.cluster(nodes, 0.7)
        second = builder.cluster(nodes, 0.7)
        assert first == second

    def test_threshold_is_strict(self, node_factory):
        a, b = node_factory("a"), node_factory("b")
        builder = ClusterBuilder(TableScorer({("a", "b"): 0.7}))
        assert len(builder.cluster([a, b], 0.7)) == 2
        assert len(builder.cluster([a, b], 0.69)) == 1

    def test_membership_depends_on_seed_order(self, node_factory):
        a, b, c = node_factory("a"), node_factory("b"), node_factory("c")
        builder = ClusterBuilder(TableScorer({("a", "b"): 0.9, ("b", "c"): 0.9, ("a", "c"): 0.1}))

        # a seeds and pulls b; c is only close to b, not to the seed
        assert [c_.member_ids for c_ in builder.cluster([a, b, c], 0.7)] == [("a", "b"), ("c",)]
        # b seeds and pulls both neighbours
        assert [c_.member_ids for c_ in builder.cluster([b, a, c], 0.7)] == [("b", "a", "c")]

    def test_singleton_mean_similarity(self, node_factory):
        (cluster,) = ClusterBuilder().cluster([node_factory("solo")], 0.7)
        assert cluster.mean_pairwise_similarity == 1.0
        assert cluster.representative_id == "solo"


class TestRepresentativeSelector:
    def test_centrality_of_a_rich_home_page(self, node_factory):
        node = node_factory(
            "home",
            url="https://app.test/",
            title="Home",
            element_count=20,
            interactive_element_count=10,
            has_screenshot=True,
            is_stats_page=True,
        )
        # home 1, title 1, elements 2, interactive 2, screenshot 1, stats 2
        assert RepresentativeSelector().centrality(node) == 9

    def test_dashboard_wins(self, node_factory):
        plain = node_factory("plain", url="https://app.test/about", title="About")
        dash = node_factory("dash", url="https://app.test/dashboard", title="About")
        assert RepresentativeSelector().select_representative([plain, dash]).node_id == "dash"

    def test_ties_go_to_first_member(self, node_factory):
        a = node_factory("a", url="https://app.test/x")
        b = node_factory("b", url="https://app.test/y")
        assert RepresentativeSelector().select_representative([a, b]).node_id == "a"
        assert RepresentativeSelector().select_representative([b, a]).node_id == "b"

    def test_empty_cluster_rejected(self):
        with pytest.raises(ValueError):
            RepresentativeSelector().select_representative([])

    def test_rank_is_stable(self, node_factory):
        a = node_factory("a", url="https://app.test/x", element_count=5)
        b = node_factory("b", url="https://app.test/y", element_count=30)
        c = node_factory("c", url="https://app.test/z", element_count=5)
        assert [n.node_id for n in RepresentativeSelector().rank([a, b, c])] == ["b", "a", "c"]
