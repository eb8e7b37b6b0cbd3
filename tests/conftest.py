"""Shared fixtures: snapshot and node factories."""

import pytest

from crawl_graph.knowledge import ExplorationGraphStore, FeatureVector, Node


def make_elements(count, tag="div", clickable=False):
    return [
        {"nodeType": tag, "interactive": {"clickable": clickable}, "selector": f"#{tag}-{i}"}
        for i in range(count)
    ]


def make_snapshot(url, title="Page", elements=None, **extra):
    snapshot = {
        "url": url,
        "title": title,
        "elements": elements if elements is not None else make_elements(12),
        "timestamp": 1700000000000,
    }
    snapshot.update(extra)
    return snapshot


def make_node(node_id, url=None, title="Page", element_count=20, element_types=None, **kwargs):
    features = {
        "interactive_element_count": kwargs.pop("interactive_element_count", 0),
        "form_element_count": kwargs.pop("form_element_count", 0),
        "media_element_count": kwargs.pop("media_element_count", 0),
        "has_screenshot": kwargs.pop("has_screenshot", False),
        "is_stats_page": kwargs.pop("is_stats_page", False),
    }
    fv = FeatureVector(
        url=url if url is not None else f"https://app.test/{node_id}",
        title=title,
        element_count=element_count,
        timestamp=1700000000000,
        **features,
    )
    if element_types is None:
        element_types = ("div",) * element_count
    return Node(
        node_id=node_id,
        features=fv,
        fingerprint=kwargs.pop("fingerprint", f"fp-{node_id}"),
        element_types=tuple(element_types),
        **kwargs,
    )


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def node_factory():
    return make_node


@pytest.fixture
def store():
    return ExplorationGraphStore()
