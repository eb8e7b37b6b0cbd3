from __future__ import annotations

"""Turn raw collector snapshots into canonical feature vectors.

The collector hands over whatever it captured on the page. Only the counts
derivable from the element list and a few page-level flags survive; the core
never looks at DOM internals beyond that.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .knowledge import FeatureVector

logger = logging.getLogger(__name__)

FORM_TAGS = ("input", "select", "textarea", "form")
MEDIA_TAGS = ("img", "video", "audio", "canvas")
STATS_KEYWORDS = ("stats", "analytics", "dashboard", "metrics", "reports", "insights")


@dataclass
class NormalizedSnapshot:
    """Everything the core keeps from one snapshot."""

    features: FeatureVector
    element_types: Tuple[str, ...] = ()
    elements: List[Dict[str, Any]] = field(default_factory=list, repr=False)
    links: List[str] = field(default_factory=list, repr=False)
    interaction_count: int = 0
    accessibility_score: float = 0.0
    performance_score: float = 0.0
    is_entry_point: bool = False


class SnapshotNormalizer:
    def __init__(self, detect_stats_pages: bool = True) -> None:
        self.detect_stats_pages = detect_stats_pages

    # ------------------------------------------------------------------
    def normalize(self, snapshot: Any) -> Optional[NormalizedSnapshot]:
        """Return the normalized form of `snapshot`, or None if it is unusable.

        Both the nested form (`fingerprint_seed_fields` + `screenshotRef`) and
        the flat collector form are accepted. Snapshots without a url or an
        element list are skipped with a warning.
        """
        if not isinstance(snapshot, dict):
            logger.warning("Skipping snapshot of type %s", type(snapshot).__name__)
            return None

        seed = snapshot.get("fingerprint_seed_fields")
        if not isinstance(seed, dict):
            seed = snapshot

        url = seed.get("url")
        elements = seed.get("elements")
        if not url or not isinstance(url, str):
            logger.warning("Skipping snapshot without url (title=%r)", seed.get("title"))
            return None
        if not isinstance(elements, list):
            logger.warning("Skipping snapshot without element list: %s", url)
            return None

        elements = [el for el in elements if isinstance(el, dict)]
        title = seed.get("title")
        if title is not None and not isinstance(title, str):
            title = str(title)

        is_stats = seed.get("isStatsPage", snapshot.get("isStatsPage"))
        if is_stats is None:
            is_stats = self.detect_stats_pages and self._looks_like_stats_page(url, title)

        has_screenshot = bool(
            snapshot.get("screenshotRef") or snapshot.get("screenshot") or snapshot.get("screenshots")
        )

        timestamp = snapshot.get("timestamp")
        if not isinstance(timestamp, (int, float)):
            timestamp = time.time() * 1000

        fv = FeatureVector(
            url=url,
            title=title,
            element_count=len(elements),
            interactive_element_count=sum(1 for el in elements if self.is_clickable(el)),
            form_element_count=sum(1 for el in elements if self.element_category(el) == "forms"),
            media_element_count=sum(1 for el in elements if self.element_category(el) == "media"),
            has_screenshot=has_screenshot,
            is_stats_page=bool(is_stats),
            timestamp=timestamp,
        )

        links = snapshot.get("links") or []
        interactions = snapshot.get("interactions") or []
        return NormalizedSnapshot(
            features=fv,
            element_types=tuple(self.node_type(el) for el in elements),
            elements=elements,
            links=[link for link in links if isinstance(link, str)],
            interaction_count=len(interactions) if isinstance(interactions, list) else 0,
            accessibility_score=_score(snapshot.get("accessibility")),
            performance_score=_score(snapshot.get("performance")),
            is_entry_point=bool(snapshot.get("isEntryPoint", False)),
        )

    # ------------------------------------------------------------------
    # element helpers ----------------------------------------------------

    @staticmethod
    def node_type(element: Dict[str, Any]) -> str:
        tag = element.get("nodeType") or element.get("tagName") or element.get("tag") or "unknown"
        return str(tag).lower()

    @staticmethod
    def is_clickable(element: Dict[str, Any]) -> bool:
        interactive = element.get("interactive")
        if isinstance(interactive, dict):
            return bool(interactive.get("clickable"))
        return bool(element.get("clickable"))

    @classmethod
    def element_category(cls, element: Dict[str, Any]) -> str:
        category = element.get("category")
        if category and category != "unknown":
            return str(category)
        tag = cls.node_type(element)
        if tag in FORM_TAGS:
            return "forms"
        if tag in MEDIA_TAGS:
            return "media"
        return "unknown"

    @staticmethod
    def _looks_like_stats_page(url: str, title: Optional[str]) -> bool:
        haystack = f"{url} {title or ''}".lower()
        return any(keyword in haystack for keyword in STATS_KEYWORDS)


def _score(section: Any) -> float:
    """Pull a numeric `score` out of an accessibility/performance probe result."""
    if isinstance(section, dict):
        section = section.get("score")
    if isinstance(section, bool):
        return 0.0
    if isinstance(section, (int, float)):
        return float(section)
    return 0.0
