"""
Origin Pattern Matcher Module

Decides whether a browser Origin header is covered by an API key's allowed
origin patterns. Patterns are either exact origins (https://shop.example.com)
or a single leftmost-label wildcard (https://*.example.com).

Parsing is a single left-to-right pass over the string. No pattern is ever
compiled into a regular expression, so a stored pattern cannot smuggle in
regex syntax or cause catastrophic backtracking.
"""

from typing import NamedTuple, Optional


ALLOWED_SCHEMES = ("http", "https")
WILDCARD_PREFIX = "*."

_LABEL_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_"
)


class ParsedOrigin(NamedTuple):
    scheme: str
    host: str
    port: Optional[str]


def _is_label(value: str) -> bool:
    return bool(value) and all(char in _LABEL_CHARS for char in value)


def _is_hostname(host: str) -> bool:
    return all(_is_label(label) for label in host.split("."))


def _split(value: str) -> Optional[ParsedOrigin]:
    """
    Split `scheme://host[:port]` without interpreting anything else

    Anything outside that shape (credentials, backslashes, paths, queries,
    fragments, whitespace, control characters) makes the host or port
    invalid, so the whole value is rejected.
    """
    separator = value.find("://")
    if separator <= 0:
        return None

    scheme = value[:separator]
    if scheme not in ALLOWED_SCHEMES:
        return None

    authority = value[separator + 3:]
    host, colon, port = authority.partition(":")
    if colon and not (port.isascii() and port.isdigit()):
        return None

    return ParsedOrigin(scheme, host, port if colon else None)


def parse_origin(origin: Optional[str]) -> Optional[ParsedOrigin]:
    """Parse a presented Origin header, None if it is not a plain origin"""
    if not origin:
        return None
    parsed = _split(origin)
    if parsed is None or not _is_hostname(parsed.host):
        return None
    return parsed


def is_valid_origin_pattern(pattern: Optional[str]) -> bool:
    """
    Check a pattern before it is stored on an API key

    A bare `*` or `scheme://*` is refused, as is a wildcard anywhere but the
    leftmost host label.
    """
    if not pattern:
        return False
    parsed = _split(pattern)
    if parsed is None:
        return False

    host = parsed.host
    if host.startswith(WILDCARD_PREFIX):
        host = host[len(WILDCARD_PREFIX):]
    return _is_hostname(host)


def match_origin_pattern(origin: Optional[str], pattern: Optional[str]) -> bool:
    """
    Check one origin against one allowed pattern

    Args:
        origin: Origin header sent by the browser
        pattern: Exact origin or https://*.domain pattern

    Returns:
        True if the origin is safe and covered by the pattern
    """
    parsed_origin = parse_origin(origin)
    if parsed_origin is None or not is_valid_origin_pattern(pattern):
        return False

    if origin == pattern:
        return True

    parsed_pattern = _split(pattern)
    if not parsed_pattern.host.startswith(WILDCARD_PREFIX):
        return False

    if parsed_origin.scheme != parsed_pattern.scheme:
        return False
    if parsed_origin.port != parsed_pattern.port:
        return False

    # "*.example.com" -> ".example.com"; the remainder must be exactly one label
    suffix = parsed_pattern.host[1:]
    if not parsed_origin.host.endswith(suffix):
        return False
    return _is_label(parsed_origin.host[:-len(suffix)])


def is_origin_allowed(origin: Optional[str], allowed_origins) -> bool:
    """True if any pattern in the allow-list covers the origin"""
    return any(match_origin_pattern(origin, pattern) for pattern in allowed_origins or [])
