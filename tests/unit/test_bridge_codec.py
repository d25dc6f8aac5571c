"""
Unit tests for the bridge key codec.

Tests cover:
- Key generation alphabet and length
- Marker extraction, including entity-escaped and spaced variants
- Validation and stripping
"""

import re

import pytest

from kolam_server.bridge import BridgeKeyCodec


class TestBridgeKeyCodec:
    """Tests for BridgeKeyCodec."""

    @pytest.fixture
    def codec(self):
        return BridgeKeyCodec()

    def test_generate_shape(self, codec):
        """Keys are 4 lowercase alphanumerics."""
        for _ in range(200):
            assert re.fullmatch(r"[a-z0-9]{4}", codec.generate())

    def test_generate_varies(self, codec):
        keys = {codec.generate() for _ in range(50)}
        assert len(keys) > 1

    def test_marker_round_trip(self, codec):
        key = codec.generate()
        assert codec.extract(f"answer text\n{codec.marker(key)}") == key

    @pytest.mark.parametrize(
        "text",
        [
            "<!-- bridge:k3y9 -->",
            "<!--bridge:k3y9-->",
            "<!--   bridge  :  k3y9   -->",
            "&lt;!-- bridge:k3y9 --&gt;",
            "&lt;!-- bridge:k3y9 -->",
            "<!-- BRIDGE:K3Y9 -->",
        ],
    )
    def test_extract_variants(self, codec, text):
        """Spacing, entity escapes and case are tolerated; keys come back lower-case."""
        assert codec.extract(f"Some reply.\n\n{text}\n") == "k3y9"

    @pytest.mark.parametrize(
        "text",
        [
            "no marker at all",
            "<!-- bridge: -->",
            "<!-- bridge:k3-y9 -->",
            "<!-- other:k3y9 -->",
            "<-- bridge:k3y9 -->",
        ],
    )
    def test_extract_rejects(self, codec, text):
        assert codec.extract(text) is None

    def test_extract_from_surrounding_text(self, codec):
        assert codec.extract("Please see <!-- bridge: Ab12 -->") == "ab12"
        assert codec.extract("...&lt;!--bridge:XY9Z--&gt;...") == "xy9z"
        assert codec.validate("Please see <!-- bridge: Ab12 -->", "AB12") is True

    def test_extract_first_marker_wins(self, codec):
        text = "<!-- bridge:aaaa --> middle <!-- bridge:bbbb -->"
        assert codec.extract(text) == "aaaa"

    def test_extract_longer_keys(self, codec):
        """The grammar accepts any alphanumeric run, not only 4 characters."""
        assert codec.extract("<!-- bridge:abc123xyz -->") == "abc123xyz"

    def test_validate(self, codec):
        text = "reply <!-- bridge:k3y9 -->"
        assert codec.validate(text, "k3y9") is True
        assert codec.validate(text, "K3Y9") is True
        assert codec.validate(text, "zzzz") is False
        assert codec.validate("reply", "k3y9") is False

    def test_strip_removes_first_marker(self, codec):
        assert codec.strip("before <!-- bridge:k3y9 --> after") == "before  after"
        assert codec.strip("untouched") == "untouched"
