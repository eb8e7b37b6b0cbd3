"""crawl-graph: keeps the state graph of an automated UI crawler from exploding.

The crawler hands over page snapshots and the transitions between them. This
package folds them into an exploration graph, groups near-duplicate pages,
keeps one representative per group, prunes what adds no coverage and reports
how much of the application has been covered so far.

Key sub-modules:

knowledge.py              – Node/Edge/Cluster data models and the graph store.
normalizer.py             – Raw collector snapshots -> canonical feature vectors.
state_matcher.py          – Fingerprint-based exact-duplicate detection.
knowledge_maintenance.py  – Knowledge update: ingest snapshots and transitions.
similarity.py             – Weighted pairwise similarity between nodes.
clustering.py             – Seed-based grouping of similar nodes.
representative.py         – Centrality heuristic and representative selection.
pruning.py                – The six pruning rules over a graph copy.
coverage.py               – Coverage accounting and marginal gain.
mitigation.py             – The mitigation cycle and its control surface.
storage.py                – Key-value persistence of the graph.
config.py                 – Thresholds, loaded from `CRAWL_GRAPH_*` env variables.

Capturing pages (browser automation) is the collector's job and lives outside
this package.
"""
