"""Archiver utilities package."""

from .pattern_matcher import (
    CompiledPattern,
    PatternDialect,
    PatternMatcher,
    PatternMatcherError,
    wildcard_to_regex,
)
from .log_setup import configure_logging

__all__ = [
    'CompiledPattern',
    'PatternDialect',
    'PatternMatcher',
    'PatternMatcherError',
    'wildcard_to_regex',
    'configure_logging',
]
