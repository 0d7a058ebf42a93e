"""Tests for utility functions."""

from sitepush.utils import (
    ensure_trailing_slash,
    parent_directories,
)


class TestEnsureTrailingSlash:
    """Tests for ensure_trailing_slash."""

    def test_adds_slash(self):
        """A slash is appended when missing."""
        assert ensure_trailing_slash("/htdocs") == "/htdocs/"

    def test_keeps_slash(self):
        """An existing slash is kept."""
        assert ensure_trailing_slash("/htdocs/") == "/htdocs/"
        assert ensure_trailing_slash("/") == "/"


class TestParentDirectories:
    """Tests for parent_directories."""

    def test_nested(self):
        """All ancestors are listed, shallowest first."""
        assert parent_directories("a/b/c") == ["a", "a/b", "a/b/c"]

    def test_single(self):
        """A top-level directory has no ancestors."""
        assert parent_directories("a") == ["a"]

    def test_root(self):
        """The root key needs no directories."""
        assert parent_directories(".") == []
        assert parent_directories("") == []
