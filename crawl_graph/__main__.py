import argparse
import json
import logging
import os
import sys

import networkx as nx

from .config import MitigationConfig
from .mitigation import StateExplosionMitigator
from .storage import JsonFileKeyValueStore, StorageError

logger = logging.getLogger(__name__)


def _load_trace(path: str) -> list:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("steps") or data.get("snapshots") or []
    if not isinstance(data, list):
        raise ValueError(f"{path} does not hold a list of trace steps")
    return data


def _write_json(path: str, payload) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay a crawl trace through the state-explosion mitigator")
    parser.add_argument("--trace", required=True, help="JSON file with the captured snapshots (and actions)")
    parser.add_argument("--out", default="run_artifacts", help="Directory to save run artefacts")
    parser.add_argument("--similarity-threshold", type=float, help="Pairs above this count as similar")
    parser.add_argument("--cluster-threshold", type=float, help="Similarity needed to join a cluster seed")
    parser.add_argument("--max-cluster-size", type=int, help="Members kept per cluster after pruning")
    parser.add_argument("--cycle-every", type=int, default=0, help="Run a mitigation cycle every N snapshots (0: only at the end)")
    parser.add_argument("--store", help="Persist the graph to this JSON file (loaded first if it exists)")
    parser.add_argument("--env-file", help="Read CRAWL_GRAPH_* settings from this .env file")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = MitigationConfig.from_env(
            args.env_file,
            similarity_threshold=args.similarity_threshold,
            cluster_threshold=args.cluster_threshold,
            max_cluster_size=args.max_cluster_size,
        )
    except ValueError as e:
        parser.error(str(e))

    kv_store = JsonFileKeyValueStore(args.store) if args.store else None
    mitigator = StateExplosionMitigator(config=config, kv_store=kv_store)

    try:
        steps = _load_trace(args.trace)
        if kv_store is not None and mitigator.load():
            logger.info("Resumed graph with %d nodes from %s", len(mitigator.store), args.store)
    except (OSError, ValueError, StorageError) as e:
        logger.error("Cannot start: %s", e)
        return 1

    print(f"Replaying {len(steps)} trace steps from {args.trace}")

    prev_id = None
    ingested = 0
    try:
        for step in steps:
            if isinstance(step, dict) and "snapshot" in step:
                snapshot, action = step.get("snapshot"), step.get("action")
            else:
                snapshot, action = step, None
            node = mitigator.ingest(
                snapshot,
                entry_point=ingested == 0,
                prev_node_id=prev_id if action is not None else None,
                action=action,
            )
            if node is None:
                continue
            prev_id = node.node_id
            ingested += 1
            if args.cycle_every and ingested % args.cycle_every == 0:
                mitigator.start_mitigation()
                # the previous node may have just been pruned
                prev_id = mitigator.store.resolve_node_id(prev_id)

        report = mitigator.start_mitigation()
    except StorageError as e:
        logger.error("Persisting the graph failed: %s", e)
        return 1

    os.makedirs(args.out, exist_ok=True)
    _write_json(os.path.join(args.out, "graph.json"), mitigator.export_graph())
    _write_json(os.path.join(args.out, "coverage.json"), mitigator.coverage.to_json())
    _write_json(os.path.join(args.out, "mitigation.json"), mitigator.export_mitigation_data())
    try:
        nx.write_graphml(mitigator.store.to_graphml_graph(), os.path.join(args.out, "graph.graphml"))
    except (OSError, nx.NetworkXError) as e:
        logger.warning("Failed to write GraphML: %s", e)

    status = mitigator.get_status()
    print("Mitigation finished. Nodes:", status["totalNodes"], "Edges:", status["totalEdges"])
    print("Clusters:", status["totalClusters"], "Pruned nodes:", status["totalPrunedNodes"])
    print("Explosion risk:", report.analysis.explosion_risk.value)
    if mitigator.is_saturated():
        print("Coverage has saturated; further crawling adds little.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
