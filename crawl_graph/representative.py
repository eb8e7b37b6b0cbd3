from __future__ import annotations

"""Representative (exemplar) selection for node clusters."""

from typing import List, Sequence
from urllib.parse import urlparse

from .knowledge import Node

HIGH_VALUE_KEYWORDS = ("/dashboard", "/admin")
HOME_KEYWORDS = ("/home", "/index")


class RepresentativeSelector:
    """Pick the most central member of a cluster.

    Centrality is a heuristic tie-breaker, not a measurement: it favours
    dashboards and admin screens, home pages, titled pages, pages with many
    (interactive) elements, pages with a screenshot and stats pages.
    """

    def centrality(self, node: Node) -> float:
        fv = node.features
        url = (fv.url or "").lower()
        score = 0.0
        if any(k in url for k in HIGH_VALUE_KEYWORDS):
            score += 2
        if self._is_home_page(url):
            score += 1
        if fv.title:
            score += 1
        score += min((fv.element_count or 0) / 10, 2)
        score += min((fv.interactive_element_count or 0) / 5, 2)
        if fv.has_screenshot:
            score += 1
        if fv.is_stats_page:
            score += 2
        return score

    def select_representative(self, members: Sequence[Node]) -> Node:
        """Return the highest-centrality member; ties go to the first seen."""
        if not members:
            raise ValueError("cannot select a representative of an empty cluster")
        if len(members) == 1:
            return members[0]
        best = members[0]
        best_score = self.centrality(best)
        for node in members[1:]:
            score = self.centrality(node)
            if score > best_score:
                best, best_score = node, score
        return best

    def rank(self, members: Sequence[Node]) -> List[Node]:
        """Members by descending centrality, stable on first-seen order."""
        return sorted(members, key=self.centrality, reverse=True)

    @staticmethod
    def _is_home_page(url: str) -> bool:
        if any(k in url for k in HOME_KEYWORDS):
            return True
        try:
            path = urlparse(url).path
        except ValueError:
            return False
        return path in ("", "/")
