"""Tests for attribute sanitization."""

import math

from agent_tracing.exporters.base import is_serializable, sanitize_attributes


class TestIsSerializable:
    """Tests for is_serializable."""

    def test_plain_values(self) -> None:
        """Test JSON-compatible values are accepted."""
        assert is_serializable({"a": [1, 2.5, "x", None, True]})

    def test_rejects_objects(self) -> None:
        """Test arbitrary objects are rejected."""
        assert not is_serializable(object())

    def test_rejects_nan(self) -> None:
        """Test non-finite floats are rejected."""
        assert not is_serializable(math.nan)

    def test_rejects_cycles(self) -> None:
        """Test self-referencing structures are rejected."""
        cyclic: dict = {}
        cyclic["self"] = cyclic
        assert not is_serializable(cyclic)


class TestSanitizeAttributes:
    """Tests for sanitize_attributes."""

    def test_drops_only_bad_values(self) -> None:
        """Test non-serializable values are dropped and the rest kept."""
        result = sanitize_attributes({"user": "u1", "handle": object(), "count": 3})
        assert result == {"user": "u1", "count": 3}

    def test_empty(self) -> None:
        """Test empty or missing attributes give an empty dict."""
        assert sanitize_attributes(None) == {}
        assert sanitize_attributes({}) == {}

    def test_idempotent(self) -> None:
        """Test sanitizing twice gives the same result."""
        once = sanitize_attributes({"a": 1, "b": {1, 2}, "c": {"nested": True}})
        assert sanitize_attributes(once) == once

    def test_does_not_mutate_input(self) -> None:
        """Test the input mapping is left untouched."""
        attributes = {"a": 1, "b": object()}
        sanitize_attributes(attributes)
        assert set(attributes) == {"a", "b"}
