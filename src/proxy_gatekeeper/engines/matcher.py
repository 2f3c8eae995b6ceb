"""
Path Pattern Matcher for Proxy Gatekeeper.

Evaluates one product path pattern against one request path.

Three mutually exclusive forms, checked in this order:
- Recursive wildcard (``**``): matches any characters, slashes included.
  Meant as the trailing token; an interior ``**`` still requires the
  path to end with the literal text that follows it.
- Single-segment wildcard (``*``): matches one or more non-slash characters.
- Literal: exact string equality.
"""

from __future__ import annotations

import re
from functools import lru_cache

RECURSIVE_WILDCARD = "**"
SEGMENT_WILDCARD = "*"


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """
    Compile a wildcard pattern into a regular expression.

    Literal parts are escaped. A ``*`` inside a recursive pattern is
    kept literal.

    Args:
        pattern: Path pattern

    Returns:
        Compiled regex, or None for a literal pattern
    """
    if RECURSIVE_WILDCARD in pattern:
        parts = pattern.split(RECURSIVE_WILDCARD)
        return re.compile(".*".join(re.escape(p) for p in parts))

    if SEGMENT_WILDCARD in pattern:
        parts = pattern.split(SEGMENT_WILDCARD)
        return re.compile("[^/]+".join(re.escape(p) for p in parts))

    return None


def matches(pattern: str, path: str) -> bool:
    """
    Check whether a request path matches a pattern.

    If the pattern ends in ``/`` and the path does not, the path is padded
    with a trailing ``/`` first. The reverse is not done.

    Args:
        pattern: Path pattern (already made proxy-relative)
        path: Request path

    Returns:
        True if the path matches
    """
    if pattern.endswith("/") and not path.endswith("/"):
        path = path + "/"

    regex = compile_pattern(pattern)
    if regex is None:
        return path == pattern

    # A trailing ** consumes the rest of the path; anywhere else the
    # literal text after it must still end the path.
    return regex.fullmatch(path) is not None


def resolve_pattern(pattern: str, base_path: str) -> str:
    """
    Make a pattern relative to a proxy base path.

    Patterns that already contain the base path are returned unchanged.

    Args:
        pattern: Configured pattern, e.g. "/blah/*" or "blah"
        base_path: Proxy base path, e.g. "/hello"

    Returns:
        Pattern prefixed with the base path, e.g. "/hello/blah/*"
    """
    if base_path in pattern:
        return pattern
    separator = "" if pattern.startswith("/") else "/"
    return f"{base_path}{separator}{pattern}"
