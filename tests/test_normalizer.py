"""
Tests for snapshot normalization
"""

import logging

from crawl_graph.normalizer import SnapshotNormalizer


def _mixed_elements():
    return (
        [{"nodeType": "BUTTON", "interactive": {"clickable": True}} for _ in range(3)]
        + [{"tagName": "input"}, {"tag": "textarea"}]
        + [{"nodeType": "img"}]
        + [{"nodeType": "div"} for _ in range(4)]
    )


class TestFeatureExtraction:
    def test_flat_snapshot_counts(self, snapshot_factory):
        snap = snapshot_factory("https://app.test/settings", title="Settings", elements=_mixed_elements())
        result = SnapshotNormalizer().normalize(snap)

        fv = result.features
        assert fv.url == "https://app.test/settings"
        assert fv.title == "Settings"
        assert fv.element_count == 10
        assert fv.interactive_element_count == 3
        assert fv.form_element_count == 2
        assert fv.media_element_count == 1
        assert fv.has_screenshot is False
        assert fv.is_stats_page is False
        assert result.element_types[:3] == ("button", "button", "button")

    def test_nested_seed_fields_and_screenshot_ref(self):
        snap = {
            "fingerprint_seed_fields": {
                "url": "https://app.test/",
                "title": "Home",
                "elements": [{"nodeType": "a"}, {"nodeType": "a"}],
            },
            "screenshotRef": "shot-1.png",
        }
        result = SnapshotNormalizer().normalize(snap)

        assert result.features.element_count == 2
        assert result.features.has_screenshot is True

    def test_explicit_category_wins_over_tag(self):
        snap = {"url": "https://app.test/", "elements": [{"nodeType": "div", "category": "forms"}]}
        result = SnapshotNormalizer().normalize(snap)
        assert result.features.form_element_count == 1

    def test_probe_scores_and_interactions(self, snapshot_factory):
        snap = snapshot_factory(
            "https://app.test/a",
            interactions=[{"type": "click"}, {"type": "hover"}],
            accessibility={"score": 0.8},
            performance=True,
            links=["/b", 42, "/c"],
        )
        result = SnapshotNormalizer().normalize(snap)

        assert result.interaction_count == 2
        assert result.accessibility_score == 0.8
        assert result.performance_score == 0.0
        assert result.links == ["/b", "/c"]

    def test_missing_timestamp_is_filled(self):
        result = SnapshotNormalizer().normalize({"url": "https://app.test/", "elements": []})
        assert isinstance(result.features.timestamp, float)


class TestStatsPages:
    def test_detected_from_url(self, snapshot_factory):
        result = SnapshotNormalizer().normalize(snapshot_factory("https://app.test/analytics/overview"))
        assert result.features.is_stats_page is True

    def test_detected_from_title(self, snapshot_factory):
        result = SnapshotNormalizer().normalize(snapshot_factory("https://app.test/x", title="Sales Reports"))
        assert result.features.is_stats_page is True

    def test_detection_can_be_disabled(self, snapshot_factory):
        normalizer = SnapshotNormalizer(detect_stats_pages=False)
        result = normalizer.normalize(snapshot_factory("https://app.test/dashboard"))
        assert result.features.is_stats_page is False

    def test_explicit_flag_overrides_detection(self, snapshot_factory):
        snap = snapshot_factory("https://app.test/dashboard", isStatsPage=False)
        assert SnapshotNormalizer().normalize(snap).features.is_stats_page is False


class TestMalformedSnapshots:
    def test_missing_url_is_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = SnapshotNormalizer().normalize({"title": "x", "elements": []})
        assert result is None
        assert "without url" in caplog.text

    def test_missing_elements_is_skipped(self):
        assert SnapshotNormalizer().normalize({"url": "https://app.test/"}) is None
        assert SnapshotNormalizer().normalize({"url": "https://app.test/", "elements": "nope"}) is None

    def test_non_dict_is_skipped(self):
        assert SnapshotNormalizer().normalize(None) is None
        assert SnapshotNormalizer().normalize(["https://app.test/"]) is None

    def test_non_dict_elements_are_ignored(self):
        result = SnapshotNormalizer().normalize(
            {"url": "https://app.test/", "elements": [{"nodeType": "a"}, "junk", 3]}
        )
        assert result.features.element_count == 1
