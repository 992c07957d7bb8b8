"""Tests for utils.helpers."""

import re

from utils.helpers import (
    build_preview_url,
    decode_data_url,
    encode_data_url,
    generate_session_id,
    normalize_design_tokens,
)


class TestSessionId:
    def test_shape(self):
        assert re.fullmatch(r"[a-z0-9]{8}", generate_session_id())

    def test_fresh_each_call(self):
        assert len({generate_session_id() for _ in range(50)}) == 50


class TestPreviewUrl:
    def test_defaults_to_main_and_preview_path(self):
        url = build_preview_url("quick-links", "org", "site", "aem.live")

        assert url == "https://main--site--org.aem.live/preview/quick-links"

    def test_branch_and_content_path(self):
        url = build_preview_url("quick-links", "org", "site", "aem.page", branch_ref="preview-abc123", content_path="/drafts/ql")

        assert url == "https://preview-abc123--site--org.aem.page/drafts/ql"


class TestDesignTokens:
    def test_empty_colors_dropped_and_body_font_fallback(self):
        tokens = normalize_design_tokens(
            {
                "colors": {"primary": "#112233", "accent": ""},
                "fonts": [],
                "typography": {"bodyFont": "Arial"},
            }
        )

        assert tokens == {
            "colors": [{"name": "primary", "value": "#112233"}],
            "fonts": [{"name": "Body", "value": "Arial"}],
        }

    def test_non_string_colors_dropped(self):
        tokens = normalize_design_tokens({"colors": {"primary": "#fff", "palette": ["#000"], "muted": None}})

        assert tokens["colors"] == [{"name": "primary", "value": "#fff"}]

    def test_font_list_wins_over_typography(self):
        tokens = normalize_design_tokens(
            {
                "fonts": [{"family": "Inter"}, {"name": "Inter"}, {"family": "Lora", "url": "x.woff2"}, "Mono"],
                "typography": {"bodyFont": "Arial", "headingFont": "Georgia"},
            }
        )

        assert tokens["fonts"] == [
            {"name": "Inter", "value": "Inter"},
            {"name": "Lora", "value": "Lora"},
            {"name": "Mono", "value": "Mono"},
        ]

    def test_heading_font_fallback(self):
        tokens = normalize_design_tokens({"typography": {"bodyFont": "Arial", "headingFont": "Georgia"}})

        assert tokens["fonts"] == [
            {"name": "Body", "value": "Arial"},
            {"name": "Heading", "value": "Georgia"},
        ]

    def test_missing_design(self):
        assert normalize_design_tokens(None) == {"colors": [], "fonts": []}


class TestDataUrl:
    def test_decode(self):
        assert decode_data_url("data:image/png;base64,aGVsbG8=") == b"hello"

    def test_encode(self):
        assert encode_data_url(b"hello") == "data:image/png;base64,aGVsbG8="
