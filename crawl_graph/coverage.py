from __future__ import annotations

"""Coverage accounting across elements, states, interactions, paths and features.

The analyzer is fed incrementally while the crawl runs (`observe_state`,
`observe_interaction`) and is sampled once per mitigation cycle
(`record_cycle`). The change in coverage between two samples, the marginal
gain, is what a caller looks at to decide whether crawling further is
worthwhile.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urldefrag, urljoin

from .knowledge import ActionDescriptor, FeatureVector
from .normalizer import NormalizedSnapshot, SnapshotNormalizer

CATEGORIES = ("elements", "states", "interactions", "paths", "features")
ELEMENT_CATEGORIES = ("navigation", "forms", "media", "interactive", "accessibility")
INTERACTION_TYPES = ("click", "hover", "focus", "keyboard", "touch", "drag")
FEATURE_TYPES = (
    "navigation",
    "forms",
    "media",
    "interactive",
    "accessibility",
    "authentication",
    "ecommerce",
    "responsive",
    "spa",
    "pwa",
)

# crawler action verbs -> interaction category
ACTION_INTERACTIONS = {
    "click": "click",
    "nav": "click",
    "navigate": "click",
    "submit": "click",
    "hover": "hover",
    "mouseover": "hover",
    "focus": "focus",
    "keyboard": "keyboard",
    "keypress": "keyboard",
    "type": "keyboard",
    "fill": "keyboard",
    "input": "keyboard",
    "touch": "touch",
    "tap": "touch",
    "swipe": "touch",
    "drag": "drag",
    "drop": "drag",
}

TEXT_ENTRY_TAGS = ("input", "select", "textarea")

ElementKey = Tuple[str, str]


@dataclass
class CategoryCoverage:
    total: int = 0
    covered: int = 0

    @property
    def percentage(self) -> float:
        return percentage(self.covered, self.total)

    def to_json(self) -> Dict[str, Any]:
        return {"total": self.total, "covered": self.covered, "percentage": self.percentage}


@dataclass
class CoverageSnapshot:
    """One entry of the analysis history."""

    coverage: Dict[str, float]
    marginal_gain: Dict[str, float]
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    def to_json(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "coverage": dict(self.coverage),
            "marginalGain": dict(self.marginal_gain),
        }


def percentage(covered: int, total: int) -> float:
    return (covered / total) * 100 if total > 0 else 0.0


class CoverageAnalyzer:
    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._elements: Dict[ElementKey, str] = {}
        self._covered_elements: set[ElementKey] = set()
        self._state_visits: int = 0
        self._states: Dict[str, FeatureVector] = {}
        self._interactions: Dict[Tuple[str, str, str], str] = {}
        self._covered_interactions: set[Tuple[str, str, str]] = set()
        self._paths: set[Tuple[str, str]] = set()
        self._covered_paths: set[Tuple[str, str]] = set()
        self._features: set[Tuple[str, str, str]] = set()
        # element -> feature keys it carries
        self._element_features: Dict[ElementKey, set[Tuple[str, str, str]]] = {}
        self._covered_features: set[Tuple[str, str, str]] = set()
        self.history: List[CoverageSnapshot] = []

    # ------------------------------------------------------------------
    # observation --------------------------------------------------------

    def observe_state(self, node_id: str, fingerprint: str, snapshot: NormalizedSnapshot) -> None:
        """Account for one captured snapshot of node `node_id`.

        Every call counts as a visited state; uniqueness is decided by
        fingerprint, never by object identity.
        """
        self._state_visits += 1
        self._states.setdefault(fingerprint, snapshot.features)

        for index, element in enumerate(snapshot.elements):
            key = (node_id, self._element_ref(element, index))
            self._elements.setdefault(key, self.element_category(element))
            if self._flagged_covered(element):
                self._covered_elements.add(key)

            for interaction in INTERACTION_TYPES:
                if self.supports_interaction(element, interaction):
                    ikey = (key[0], key[1], interaction)
                    self._interactions.setdefault(ikey, interaction)
                    if interaction in (element.get("coveredInteractions") or ()) or _attr(
                        element, f"data-{interaction}-covered"
                    ):
                        self._covered_interactions.add(ikey)

            for feature in self.element_features(element):
                fkey = (feature, key[0], key[1])
                self._features.add(fkey)
                self._element_features.setdefault(key, set()).add(fkey)
                if element.get("featureCovered") or _attr(element, "data-feature-covered"):
                    self._covered_features.add(fkey)

        page_url = snapshot.features.url or ""
        for link in snapshot.links:
            target = self._normalize_target(page_url, link)
            if target:
                self._paths.add((node_id, target))

    def observe_interaction(
        self,
        source_id: str,
        action: ActionDescriptor,
        target_url: Optional[str] = None,
    ) -> None:
        """Account for an action the crawler performed on `source_id`."""
        interaction = ACTION_INTERACTIONS.get(action.type.lower(), "click")
        ref = action.selector or f"action:{action.type}:{action.text}"
        key = (source_id, ref)
        self._elements.setdefault(key, "navigation" if interaction == "click" else "interactive")
        self._covered_elements.add(key)

        ikey = (source_id, ref, interaction)
        self._interactions.setdefault(ikey, interaction)
        self._covered_interactions.add(ikey)

        self._covered_features.update(self._element_features.get(key, ()))

        if target_url:
            target = self._normalize_target(target_url, target_url)
            if target:
                self._paths.add((source_id, target))
                self._covered_paths.add((source_id, target))

    # ------------------------------------------------------------------
    # metrics ------------------------------------------------------------

    def category_coverage(self) -> Dict[str, CategoryCoverage]:
        # totals are unions with the covered sets, so covered <= total always
        return {
            "elements": CategoryCoverage(
                total=len(set(self._elements) | self._covered_elements),
                covered=len(self._covered_elements),
            ),
            "states": CategoryCoverage(total=self._state_visits, covered=len(self._states)),
            "interactions": CategoryCoverage(
                total=len(set(self._interactions) | self._covered_interactions),
                covered=len(self._covered_interactions),
            ),
            "paths": CategoryCoverage(
                total=len(self._paths | self._covered_paths),
                covered=len(self._covered_paths),
            ),
            "features": CategoryCoverage(
                total=len(self._features | self._covered_features),
                covered=len(self._covered_features),
            ),
        }

    def statistics(self) -> Dict[str, Dict[str, Any]]:
        stats = {name: cov.to_json() for name, cov in self.category_coverage().items()}
        stats["states"]["unique"] = stats["states"]["covered"]
        return stats

    def current_coverage(self) -> Dict[str, float]:
        return {name: cov.percentage for name, cov in self.category_coverage().items()}

    def record_cycle(self) -> Dict[str, float]:
        """Append the current coverage to the history and return the marginal gain."""
        current = self.current_coverage()
        previous = self.history[-1].coverage if self.history else {c: 0.0 for c in CATEGORIES}
        gain = {c: current[c] - previous.get(c, 0.0) for c in CATEGORIES}
        self.history.append(CoverageSnapshot(coverage=current, marginal_gain=gain))
        return gain

    def marginal_gain(self) -> Dict[str, float]:
        if not self.history:
            return {c: 0.0 for c in CATEGORIES}
        return dict(self.history[-1].marginal_gain)

    def is_saturated(self, min_gain: float = 1.0, window: int = 3) -> bool:
        """True when the last `window` cycles each gained less than `min_gain` points."""
        if len(self.history) < window:
            return False
        recent = self.history[-window:]
        return all(max(entry.marginal_gain.values()) < min_gain for entry in recent)

    def breakdown(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Per-type coverage for elements, interactions and features."""
        elements = {c: CategoryCoverage() for c in ELEMENT_CATEGORIES}
        for key, category in self._elements.items():
            cov = elements.setdefault(category, CategoryCoverage())
            cov.total += 1
            if key in self._covered_elements:
                cov.covered += 1

        interactions = {t: CategoryCoverage() for t in INTERACTION_TYPES}
        for ikey, interaction in self._interactions.items():
            cov = interactions[interaction]
            cov.total += 1
            if ikey in self._covered_interactions:
                cov.covered += 1

        features: Dict[str, CategoryCoverage] = {}
        for fkey in self._features:
            cov = features.setdefault(fkey[0], CategoryCoverage())
            cov.total += 1
            if fkey in self._covered_features:
                cov.covered += 1

        return {
            "elements": {k: v.to_json() for k, v in elements.items()},
            "interactions": {k: v.to_json() for k, v in interactions.items()},
            "features": {k: v.to_json() for k, v in features.items()},
        }

    def state_diversity(self) -> float:
        """Mean pairwise feature distance between unique states (1.0 for <= 1 state)."""
        vectors = list(self._states.values())
        if len(vectors) <= 1:
            return 1.0
        total = 0.0
        comparisons = 0
        for i in range(len(vectors)):
            for j in range(i + 1, len(vectors)):
                total += feature_distance(vectors[i], vectors[j])
                comparisons += 1
        return total / comparisons

    def to_json(self) -> Dict[str, Any]:
        return {
            "metrics": self.statistics(),
            "breakdown": self.breakdown(),
            "stateDiversity": self.state_diversity(),
            "analysisHistory": [h.to_json() for h in self.history],
            "timestamp": time.time() * 1000,
        }

    # ------------------------------------------------------------------
    # element classification ---------------------------------------------

    @staticmethod
    def element_category(element: Dict[str, Any]) -> str:
        # the collector's own classification wins over tag heuristics
        declared = element.get("category")
        if declared in ELEMENT_CATEGORIES:
            return declared
        tag = SnapshotNormalizer.node_type(element)
        role = _attr(element, "role") or element.get("role")
        if tag in ("a", "button") or role in ("link", "button"):
            return "navigation"
        if tag in ("input", "select", "textarea", "form"):
            return "forms"
        if tag in ("img", "video", "audio", "canvas"):
            return "media"
        if _attr(element, "data-click") or _attr(element, "data-hover") or _attr(element, "data-touch"):
            return "interactive"
        if role or _attr(element, "aria-label") or _attr(element, "aria-describedby"):
            return "accessibility"
        return "interactive"

    @staticmethod
    def supports_interaction(element: Dict[str, Any], interaction: str) -> bool:
        tag = SnapshotNormalizer.node_type(element)
        flags = element.get("interactive") if isinstance(element.get("interactive"), dict) else {}
        classes = str(_attr(element, "class") or "").split()
        if interaction == "click":
            return tag in ("a", "button") or _attr(element, "role") == "button" or bool(flags.get("clickable"))
        if interaction == "hover":
            return _attr(element, "data-hover") is not None or "hoverable" in classes
        if interaction == "focus":
            return tag in TEXT_ENTRY_TAGS or bool(flags.get("focusable"))
        if interaction == "keyboard":
            return tag in TEXT_ENTRY_TAGS or bool(flags.get("editable"))
        if interaction == "touch":
            return _attr(element, "data-touch") is not None or "touchable" in classes
        if interaction == "drag":
            return bool(flags.get("draggable")) or _attr(element, "data-draggable") is not None
        return False

    @staticmethod
    def element_features(element: Dict[str, Any]) -> List[str]:
        declared = element.get("feature") or _attr(element, "data-feature")
        classes = str(_attr(element, "class") or "").split()
        found = []
        for feature in FEATURE_TYPES:
            if declared == feature or feature in classes or _attr(element, f"data-{feature}") is not None:
                found.append(feature)
        return found

    # ------------------------------------------------------------------
    @staticmethod
    def _element_ref(element: Dict[str, Any], index: int) -> str:
        selector = element.get("selector")
        if selector:
            return str(selector)
        return f"{SnapshotNormalizer.node_type(element)}:{index}"

    @staticmethod
    def _flagged_covered(element: Dict[str, Any]) -> bool:
        if element.get("crawled") or element.get("visited") or element.get("covered"):
            return True
        return _attr(element, "data-crawled") is not None or _attr(element, "data-visited") is not None

    @staticmethod
    def _normalize_target(base: str, link: str) -> Optional[str]:
        try:
            target, _ = urldefrag(urljoin(base, link))
        except ValueError:
            return None
        if not target or target.startswith(("javascript:", "mailto:", "tel:")):
            return None
        return target


def _attr(element: Dict[str, Any], name: str) -> Any:
    attrs = element.get("attributes")
    if isinstance(attrs, dict):
        return attrs.get(name)
    return None


def feature_distance(a: FeatureVector, b: FeatureVector) -> float:
    """Mean per-field distance between two feature vectors, in [0, 1]."""
    keys: Sequence[str] = (
        "url",
        "title",
        "element_count",
        "interactive_element_count",
        "form_element_count",
        "media_element_count",
    )
    total = 0.0
    for key in keys:
        va, vb = getattr(a, key), getattr(b, key)
        if isinstance(va, (int, float)) and isinstance(vb, (int, float)):
            largest = max(va, vb)
            total += abs(va - vb) / largest if largest > 0 else 0.0
        elif va != vb:
            total += 1
    return total / len(keys)
