"""
Tests for navigation and URL pattern helpers.
"""

import pytest

from stepwise.browser.urls import (
    compile_url_pattern,
    is_absolute_http_url,
    resolve_navigation_target,
    url_matches,
)

BASE = "https://app.test/app/"


class TestResolveNavigationTarget:
    """Tests for resolve_navigation_target."""

    @pytest.mark.parametrize(
        "target, current, expected",
        [
            ("https://other.test/x", "about:blank", "https://other.test/x"),
            ("HTTP://other.test", "about:blank", "HTTP://other.test"),
            ("/login", "https://app.test/app/cart", "https://app.test/login"),
            ("checkout", "https://app.test/app/cart", "https://app.test/app/checkout"),
            ("checkout", "about:blank", "https://app.test/app/checkout"),
            ("  /trimmed  ", "about:blank", "https://app.test/trimmed"),
        ],
    )
    def test_resolution(self, target, current, expected):
        assert resolve_navigation_target(target, current, BASE) == expected

    def test_empty_target(self):
        with pytest.raises(ValueError, match="Navigation target cannot be empty."):
            resolve_navigation_target("   ", "about:blank", BASE)


class TestUrlMatches:
    """Tests for URL glob matching."""

    def test_double_star(self):
        assert url_matches("**/api/profile", "https://app.test/api/profile")
        assert not url_matches("**/api/profile", "https://app.test/api/profile/photo")

    def test_single_star(self):
        assert url_matches("https://app.test/api/*", "https://app.test/api/orders")
        assert not url_matches("https://app.test/*/x", "https://app.test/a b/x")

    def test_case_insensitive(self):
        assert url_matches("**/API/Login", "https://app.test/api/login")

    def test_literal_pattern_is_substring(self):
        """Test patterns without wildcards match anywhere in the URL."""
        assert url_matches("/api/login", "https://app.test/api/login?next=/")
        assert not url_matches("/api/logout", "https://app.test/api/login")

    def test_regex_characters_are_literal(self):
        pattern = compile_url_pattern("**/search?q=*")

        assert pattern.fullmatch("https://app.test/search?q=shoes")
        assert not pattern.fullmatch("https://app.test/searchXq=shoes")


def test_is_absolute_http_url():
    assert is_absolute_http_url("https://a.test")
    assert not is_absolute_http_url("about:blank")
    assert not is_absolute_http_url(None)
