from __future__ import annotations

"""Runtime configuration for the mitigation engine.

Values default to the thresholds the crawler extension shipped with and can be
overridden through `CRAWL_GRAPH_*` environment variables (a local `.env` file
is honoured) or explicitly by the caller.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv

ENV_PREFIX = "CRAWL_GRAPH_"


@dataclass
class MitigationConfig:
    similarity_threshold: float = 0.8
    cluster_threshold: float = 0.7
    max_cluster_size: int = 10
    # pairs above this count as redundant in the explosion analysis
    redundancy_threshold: float = 0.9
    low_value_threshold: float = 0.1
    low_traffic_threshold: float = 0.1
    medium_risk_node_count: int = 500
    high_risk_node_count: int = 1000
    min_marginal_gain: float = 1.0
    saturation_window: int = 3
    detect_stats_pages: bool = True
    collapse_dynamic_segments: bool = False
    graph_key: str = "ui-crawler-graph"

    def __post_init__(self) -> None:
        for name in (
            "similarity_threshold",
            "cluster_threshold",
            "redundancy_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.max_cluster_size < 1:
            raise ValueError(f"max_cluster_size must be >= 1, got {self.max_cluster_size}")
        if self.saturation_window < 1:
            raise ValueError(f"saturation_window must be >= 1, got {self.saturation_window}")
        if self.medium_risk_node_count > self.high_risk_node_count:
            raise ValueError("medium_risk_node_count cannot exceed high_risk_node_count")

    # ------------------------------------------------------------------
    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides: Any) -> "MitigationConfig":
        """Build a config from `CRAWL_GRAPH_*` variables, then apply `overrides`.

        Overrides whose value is None are ignored so CLI flags can be passed
        through unconditionally.
        """
        load_dotenv(env_file)
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(raw, f.default)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
