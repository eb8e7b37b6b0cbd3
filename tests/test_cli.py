"""
Tests for the trace-replay command line
"""

import json

import networkx as nx

from crawl_graph.__main__ import main


def _trace(snapshot_factory):
    steps = [{"snapshot": snapshot_factory("https://shop.test/", title="Shop"), "action": None}]
    for i in range(1, 4):
        steps.append(
            {
                "snapshot": snapshot_factory(f"https://shop.test/products/{i}", title="Product"),
                "action": {"type": "click", "selector": f"#product-{i}"},
            }
        )
    # a step the collector failed to capture
    steps.append({"snapshot": {"title": "broken"}, "action": {"type": "click"}})
    return steps


def test_replay_writes_artifacts(tmp_path, snapshot_factory):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps(_trace(snapshot_factory)), encoding="utf-8")
    out = tmp_path / "out"

    assert main(["--trace", str(trace), "--out", str(out)]) == 0

    graph = json.loads((out / "graph.json").read_text(encoding="utf-8"))
    assert len(graph["nodes"]) == 4
    assert len(graph["edges"]) == 3
    assert sum(n["isEntryPoint"] for n in graph["nodes"]) == 1

    mitigation = json.loads((out / "mitigation.json").read_text(encoding="utf-8"))
    assert len(mitigation["cycles"]) == 1

    coverage = json.loads((out / "coverage.json").read_text(encoding="utf-8"))
    assert coverage["metrics"]["states"]["total"] == 4

    assert nx.read_graphml(str(out / "graph.graphml")).number_of_nodes() == 4


def test_periodic_cycles_and_store(tmp_path, snapshot_factory):
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps(_trace(snapshot_factory)), encoding="utf-8")
    store = tmp_path / "graph-store.json"
    out = tmp_path / "out"

    assert main(["--trace", str(trace), "--out", str(out), "--cycle-every", "2", "--max-cluster-size", "2",
                 "--store", str(store)]) == 0

    persisted = json.loads(store.read_text(encoding="utf-8"))["ui-crawler-graph"]
    graph = json.loads((out / "graph.json").read_text(encoding="utf-8"))
    assert persisted == graph
    assert len(graph["prunedNodes"]) >= 1


def test_missing_trace_fails(tmp_path):
    assert main(["--trace", str(tmp_path / "missing.json"), "--out", str(tmp_path / "out")]) == 1
