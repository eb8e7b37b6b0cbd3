from __future__ import annotations

"""Utilities for deciding whether a snapshot is an exact duplicate of a known state."""

import hashlib
import json
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .knowledge import ExplorationGraphStore, FeatureVector

_NUMERIC_SEGMENT = re.compile(r"^\d+$")
_UUID_SEGMENT = re.compile(r"^[a-f0-9-]{8,}$", re.I)

NODE_ID_LENGTH = 16


class FingerprintEngine:
    """Rule-based exact-duplicate detection.

    A fingerprint is the SHA-256 of a canonical JSON rendering of the fields
    that define a state: url, title, the element/interactive/form/media counts
    and the stats flag. Timestamps and screenshot availability are left out so
    revisits of the same screen collapse. Collisions are not detected.
    """

    def __init__(
        self,
        store: ExplorationGraphStore | None = None,
        collapse_dynamic_segments: bool = False,
    ) -> None:
        self._store = store
        self.collapse_dynamic_segments = collapse_dynamic_segments

    # ------------------------------------------------------------------
    def compute_fingerprint(self, features: FeatureVector) -> str:
        canon = self._canonicalize(features)
        return hashlib.sha256(canon.encode("utf-8")).hexdigest()

    def node_id_for(self, fingerprint: str) -> str:
        return fingerprint[:NODE_ID_LENGTH]

    def resolve(self, fingerprint: str) -> Optional[str]:
        """Return the id of the live node that owns `fingerprint`, if any."""
        if self._store is None:
            return None
        return self._store.resolve_fingerprint(fingerprint)

    # ------------------------------------------------------------------
    def _canonicalize(self, features: FeatureVector) -> str:
        url = features.url or ""
        if self.collapse_dynamic_segments:
            url = self.url_structure(url)
        payload: Dict[str, Any] = {
            "url": url,
            "title": features.title or "",
            "elementCount": features.element_count,
            "interactiveElementCount": features.interactive_element_count,
            "formElementCount": features.form_element_count,
            "mediaElementCount": features.media_element_count,
            "isStatsPage": features.is_stats_page,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    @staticmethod
    def url_structure(url: str) -> str:
        """Replace numeric and uuid-like path segments with placeholders.

        `https://shop.test/items/42?ref=x` becomes `shop.test/items/{id}?`; the
        query values are dropped, only their presence is kept.
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            return url
        segments = []
        for segment in parsed.path.split("/"):
            if not segment:
                continue
            if _NUMERIC_SEGMENT.match(segment):
                segments.append("{id}")
            elif _UUID_SEGMENT.match(segment):
                segments.append("{uuid}")
            else:
                segments.append(segment)
        structure = f"{parsed.hostname or ''}/{'/'.join(segments)}"
        if parsed.query:
            structure += "?"
        return structure
