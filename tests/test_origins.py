"""
Tests for origin pattern matching

Exact and single-label wildcard patterns, refused patterns, and origins that
try to smuggle a different host past the matcher.
"""

import pytest

from payment_core.origins import (
    parse_origin, is_valid_origin_pattern, match_origin_pattern, is_origin_allowed
)


class TestPatternValidation:

    @pytest.mark.parametrize("pattern", [
        "https://shop.example.com",
        "http://localhost:3000",
        "https://*.example.com",
        "https://*.example.com:8443",
    ])
    def test_valid_patterns(self, pattern):
        assert is_valid_origin_pattern(pattern)

    @pytest.mark.parametrize("pattern", [
        None,
        "",
        "*",
        "https://*",
        "https://*.",
        "https://shop.*.com",
        "https://**.example.com",
        "ftp://example.com",
        "example.com",
        "https://example.com/",
        "https://example.com:abc",
        "https://.*",
        "https://(a|b).example.com",
    ])
    def test_refused_patterns(self, pattern):
        assert not is_valid_origin_pattern(pattern)


class TestParseOrigin:

    def test_parses_plain_origin(self):
        parsed = parse_origin("https://shop.example.com:8443")
        assert parsed.scheme == "https"
        assert parsed.host == "shop.example.com"
        assert parsed.port == "8443"

    @pytest.mark.parametrize("origin", [
        None,
        "",
        "null",
        "https://",
        "https://evil.com@shop.example.com",
        "https://shop.example.com\\@evil.com",
        "https://shop.example.com/path",
        "https://shop.example.com?x=1",
        "https://shop.example.com#frag",
        "https://shop example.com",
        "https://shop.example.com\n",
        "https://shop..example.com",
        "javascript://shop.example.com",
    ])
    def test_rejects_unsafe_origins(self, origin):
        assert parse_origin(origin) is None


class TestMatching:

    def test_exact_match(self):
        assert match_origin_pattern("https://shop.example.com", "https://shop.example.com")

    def test_exact_match_is_case_sensitive(self):
        assert not match_origin_pattern("https://Shop.example.com", "https://shop.example.com")

    def test_wildcard_matches_one_label(self):
        assert match_origin_pattern("https://shop.example.com", "https://*.example.com")
        assert match_origin_pattern("https://my-shop.example.com", "https://*.example.com")

    def test_wildcard_does_not_match_apex(self):
        assert not match_origin_pattern("https://example.com", "https://*.example.com")

    def test_wildcard_does_not_match_nested_labels(self):
        assert not match_origin_pattern("https://a.b.example.com", "https://*.example.com")

    def test_wildcard_requires_label_boundary(self):
        assert not match_origin_pattern("https://evilexample.com", "https://*.example.com")
        assert not match_origin_pattern("https://.example.com", "https://*.example.com")

    def test_wildcard_suffix_is_case_sensitive(self):
        assert not match_origin_pattern("https://shop.EXAMPLE.com", "https://*.example.com")

    def test_scheme_must_match(self):
        assert not match_origin_pattern("http://shop.example.com", "https://*.example.com")
        assert not match_origin_pattern("http://shop.example.com", "https://shop.example.com")

    def test_port_must_match(self):
        assert not match_origin_pattern("https://shop.example.com:8443", "https://*.example.com")
        assert not match_origin_pattern("https://shop.example.com", "https://*.example.com:8443")
        assert match_origin_pattern("https://shop.example.com:8443", "https://*.example.com:8443")
        assert not match_origin_pattern("http://localhost:3001", "http://localhost:3000")

    def test_smuggled_hosts_never_match(self):
        pattern = "https://*.example.com"
        assert not match_origin_pattern("https://evil.com@shop.example.com", pattern)
        assert not match_origin_pattern("https://evil.com\\.example.com", pattern)
        assert not match_origin_pattern("https://shop.example.com.evil.com", pattern)
        assert not match_origin_pattern("https://evil.com/.example.com", pattern)

    def test_invalid_pattern_never_matches(self):
        assert not match_origin_pattern("https://shop.example.com", "*")
        assert not match_origin_pattern("https://shop.example.com", "https://*")

    def test_long_input_is_linear(self):
        origin = "https://" + "a" * 50000 + ".example.com"
        assert not match_origin_pattern(origin + "!", "https://*.example.com")
        assert match_origin_pattern(origin, "https://*.example.com")


class TestAllowList:

    def test_any_pattern_may_match(self):
        allowed = ["https://shop.example.com", "https://*.partner.io"]
        assert is_origin_allowed("https://shop.example.com", allowed)
        assert is_origin_allowed("https://pay.partner.io", allowed)
        assert not is_origin_allowed("https://other.example.com", allowed)

    def test_empty_list_allows_nothing(self):
        assert not is_origin_allowed("https://shop.example.com", [])
        assert not is_origin_allowed("https://shop.example.com", None)
