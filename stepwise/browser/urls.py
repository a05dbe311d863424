"""
URL helpers for navigation steps and network waits.
"""

import re
from urllib.parse import urljoin

_ABSOLUTE_HTTP = re.compile(r"^https?://", re.IGNORECASE)


def is_absolute_http_url(value: str) -> bool:
    return bool(_ABSOLUTE_HTTP.match(value or ""))


def resolve_navigation_target(target: str, current_url: str, base_url: str) -> str:
    """
    Resolve a navigation step target to an absolute URL.

    Absolute http(s) URLs are used as-is, paths starting with ``/`` are
    resolved against the project base URL, and anything else is resolved
    against the current page when it is on an http(s) URL, otherwise
    against the base URL.

    Raises:
        ValueError: If the target is empty
    """
    value = (target or "").strip()
    if not value:
        raise ValueError("Navigation target cannot be empty.")

    if is_absolute_http_url(value):
        return value

    if value.startswith("/"):
        return urljoin(base_url, value)

    fallback_base = current_url if is_absolute_http_url(current_url) else base_url
    return urljoin(fallback_base, value)


def compile_url_pattern(pattern: str) -> re.Pattern:
    """
    Compile a URL glob.

    ``**`` matches anything, ``*`` matches a run of non-whitespace
    characters. Matching is case-insensitive and covers the whole URL.
    """
    parts = []
    index = 0
    while index < len(pattern):
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
        elif pattern[index] == "*":
            parts.append(r"\S*")
            index += 1
        else:
            parts.append(re.escape(pattern[index]))
            index += 1
    return re.compile("".join(parts), re.IGNORECASE)


def url_matches(pattern: str, url: str) -> bool:
    """Match a URL against a glob; without wildcards, substring containment."""
    if "*" not in pattern:
        return pattern.lower() in url.lower()
    return compile_url_pattern(pattern).fullmatch(url) is not None
