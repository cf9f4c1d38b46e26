"""URL pattern matching for capture rules.

This module compiles URL patterns into regular expressions and caches them
by pattern string. Two dialects are supported, chosen per matcher instance:

- wildcard: ``*`` matches zero or more characters, ``?`` exactly one, and the
  pattern must match the whole URL (the same dialect the protocol uses for
  ``Fetch.enable`` url patterns)
- regex: raw regular expression syntax, searched anywhere in the URL
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

_WILDCARD_TOKENS = re.compile(r"([*?])")


class PatternMatcherError(Exception):
    """Raised when a pattern cannot be compiled."""
    pass


class PatternDialect(str, Enum):
    """Pattern syntaxes understood by PatternMatcher."""
    WILDCARD = "wildcard"
    REGEX = "regex"


@dataclass(frozen=True)
class CompiledPattern:
    """A compiled URL pattern."""

    source: str
    regex: "re.Pattern[str]"
    anchored: bool

    def matches(self, url: str) -> bool:
        """Test a URL against this pattern."""
        if self.anchored:
            return self.regex.fullmatch(url) is not None
        return self.regex.search(url) is not None


def wildcard_to_regex(pattern: str) -> "re.Pattern[str]":
    """Convert a wildcard pattern into a compiled regular expression.

    Literal segments are escaped before ``*`` and ``?`` are substituted, so
    characters like ``.`` or ``+`` in a URL pattern only match themselves.

    Args:
        pattern: Wildcard pattern such as ``https://*.example.com/img?.png``

    Returns:
        Compiled expression, meant to be used with ``fullmatch``
    """
    parts = []
    for token in _WILDCARD_TOKENS.split(pattern):
        if token == "*":
            parts.append(".*")
        elif token == "?":
            parts.append(".")
        elif token:
            parts.append(re.escape(token))
    return re.compile("".join(parts), re.DOTALL)


class PatternMatcher:
    """Caching URL pattern matcher.

    Compiled patterns are cached by their source string, so checking the
    same capture rules against every target and request only compiles each
    pattern once.
    """

    def __init__(self, dialect: PatternDialect = PatternDialect.WILDCARD):
        """Initialize the matcher.

        Args:
            dialect: Syntax used for every pattern compiled by this instance
        """
        self.dialect = PatternDialect(dialect)
        self._cache: Dict[str, CompiledPattern] = {}

    def compile(self, pattern: str) -> CompiledPattern:
        """Compile a pattern, returning the cached matcher when available.

        Args:
            pattern: Pattern string in this matcher's dialect

        Returns:
            Compiled pattern

        Raises:
            PatternMatcherError: If a regex pattern is invalid
        """
        compiled = self._cache.get(pattern)
        if compiled is not None:
            return compiled

        try:
            if self.dialect == PatternDialect.WILDCARD:
                compiled = CompiledPattern(pattern, wildcard_to_regex(pattern), anchored=True)
            else:
                compiled = CompiledPattern(pattern, re.compile(pattern), anchored=False)
        except re.error as e:
            raise PatternMatcherError(f"Invalid pattern '{pattern}': {e}")

        self._cache[pattern] = compiled
        return compiled

    def matches_any(self, url: str, patterns: Iterable[str]) -> bool:
        """Check whether a URL matches at least one pattern.

        Args:
            url: The URL to test
            patterns: Patterns to test, in order

        Returns:
            True on the first matching pattern, False if none match
        """
        return self.first_match(url, patterns) is not None

    def first_match(self, url: str, patterns: Iterable[str]) -> Optional[str]:
        """Return the first pattern matching the URL, or None."""
        for pattern in patterns:
            if self.compile(pattern).matches(url):
                return pattern
        return None

    def clear(self) -> None:
        """Drop all cached patterns."""
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        """Number of compiled patterns held in the cache."""
        return len(self._cache)

    def __repr__(self) -> str:
        return f"PatternMatcher(dialect={self.dialect.value}, cached={self.cache_size})"
