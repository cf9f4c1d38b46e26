"""Unit tests for URL pattern matching."""

import re
from unittest.mock import patch

import pytest

from archiver.utils import pattern_matcher
from archiver.utils.pattern_matcher import (
    PatternDialect,
    PatternMatcher,
    PatternMatcherError,
    wildcard_to_regex,
)


class TestWildcardDialect:
    """Test cases for wildcard patterns."""

    @pytest.fixture
    def matcher(self):
        return PatternMatcher()

    @pytest.mark.parametrize("prefix", ["https", "abc", "https://example.com/img"])
    def test_star_suffix_matches_prefix(self, matcher, prefix):
        """A trailing star matches every string with the prefix."""
        pattern = matcher.compile(prefix + "*")

        assert pattern.matches(prefix)
        assert pattern.matches(prefix + "/anything?at=all")
        assert not pattern.matches("x" + prefix)
        assert not pattern.matches(prefix[:-1])

    def test_question_mark_matches_exactly_one(self, matcher):
        pattern = matcher.compile("a?c")

        assert pattern.matches("abc")
        assert not pattern.matches("ac")
        assert not pattern.matches("abbc")

    def test_anchored_to_whole_url(self, matcher):
        pattern = matcher.compile("*.png")

        assert pattern.matches("https://cdn.example.com/a.png")
        assert not pattern.matches("https://cdn.example.com/a.png?size=2")

    def test_metacharacters_are_literal(self, matcher):
        """Regex metacharacters in literal segments only match themselves."""
        pattern = matcher.compile("https://example.com/a+b(1).png")

        assert pattern.matches("https://example.com/a+b(1).png")
        assert not pattern.matches("https://exampleXcom/aab1.png")

    def test_dot_is_not_a_wildcard(self, matcher):
        assert not matcher.compile("*.example.com/*").matches("https://wwwXexample.com/")

    def test_wildcard_to_regex(self):
        regex = wildcard_to_regex("https://*.example.com/img?.png")

        assert regex.pattern == re.escape("https://") + ".*" + re.escape(".example.com/img") + "." + re.escape(".png")

    def test_star_matches_newlines(self, matcher):
        assert matcher.compile("data:*").matches("data:image/png;base64,AA\nBB")


class TestRegexDialect:
    """Test cases for raw regular expression patterns."""

    @pytest.fixture
    def matcher(self):
        return PatternMatcher(PatternDialect.REGEX)

    def test_search_is_unanchored(self, matcher):
        pattern = matcher.compile(r"/images/\d+")

        assert pattern.matches("https://example.com/images/42.png")
        assert not pattern.matches("https://example.com/images/latest.png")

    def test_invalid_pattern_raises(self, matcher):
        with pytest.raises(PatternMatcherError):
            matcher.compile("(unclosed")

    def test_wildcards_are_regex_syntax(self, matcher):
        """A star is a quantifier in the regex dialect."""
        assert matcher.compile("ab*c").matches("ac")


class TestPatternCache:
    """Test cases for compiled pattern caching."""

    def test_same_pattern_returns_cached_object(self):
        matcher = PatternMatcher()

        first = matcher.compile("*.png")
        second = matcher.compile("*.png")

        assert first is second
        assert matcher.cache_size == 1

    def test_pattern_compiled_once(self):
        matcher = PatternMatcher()

        with patch.object(pattern_matcher, "wildcard_to_regex", wraps=wildcard_to_regex) as compile_spy:
            for _ in range(5):
                matcher.matches_any("https://example.com/a.png", ["*.png"])

        assert compile_spy.call_count == 1

    def test_clear(self):
        matcher = PatternMatcher()
        matcher.compile("*.png")
        matcher.clear()

        assert matcher.cache_size == 0

    def test_dialects_use_separate_caches(self):
        wildcard = PatternMatcher()
        regex = PatternMatcher(PatternDialect.REGEX)

        assert wildcard.compile("a.c").matches("a.c")
        assert not wildcard.compile("a.c").matches("abc")
        assert regex.compile("a.c").matches("abc")


class TestMatchesAny:
    """Test cases for matching against pattern lists."""

    def test_matches_any(self):
        matcher = PatternMatcher()
        patterns = ["*.jpg", "*.png"]

        assert matcher.matches_any("https://example.com/a.png", patterns)
        assert not matcher.matches_any("https://example.com/a.gif", patterns)
        assert not matcher.matches_any("https://example.com/a.png", [])

    def test_short_circuits_on_first_match(self):
        matcher = PatternMatcher()

        matcher.matches_any("https://example.com/a.png", ["*.png", "*.jpg"])

        # The second pattern was never needed
        assert matcher.cache_size == 1

    def test_first_match(self):
        matcher = PatternMatcher()

        assert matcher.first_match("https://example.com/a.png", ["*.jpg", "*a.png", "*"]) == "*a.png"
        assert matcher.first_match("https://example.com/a.gif", ["*.jpg"]) is None
