"""Bracket-notation query string parsing and encoding.

``price[gte]=5&sort=price&sort=rating`` parses to::

    {"price": {"gte": "5"}, "sort": ["price", "rating"]}

Nested parsing makes operator injection through the query string
(``price[$gt]=0``) visible to the sanitization passes, and lets routes build
range filters from plain query parameters.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, urlencode

MAX_DEPTH = 5
MAX_PARAMS = 1000

_KEY_PATTERN = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_SEGMENT_PATTERN = re.compile(r"\[([^\[\]]*)\]")


def _split_key(key: str) -> list[str]:
    """Split ``a[b][c]`` into ``["a", "b", "c"]``.

    Malformed keys (``a[b``, ``[x]``) are kept as a single literal segment and
    segments deeper than ``MAX_DEPTH`` are folded into one literal segment.
    """
    match = _KEY_PATTERN.match(key)
    if not match:
        return [key]

    segments = [match.group(1), *_SEGMENT_PATTERN.findall(match.group(2))]
    if len(segments) > MAX_DEPTH + 1:
        overflow = "".join(f"[{segment}]" for segment in segments[MAX_DEPTH + 1 :])
        segments = segments[: MAX_DEPTH + 1] + [overflow]
    return segments


def _merge(container: dict[str, Any], key: str, value: Any) -> None:
    existing = container.get(key)
    if key not in container:
        container[key] = value
    elif isinstance(existing, list):
        existing.append(value)
    else:
        container[key] = [existing, value]


def _child(container: dict[str, Any], key: str) -> dict[str, Any]:
    existing = container.get(key)
    if isinstance(existing, dict):
        return existing
    child: dict[str, Any] = {}
    if key in container:
        _merge(container, key, child)
    else:
        container[key] = child
    return child


def parse_nested_query(pairs: Iterable[tuple[str, str]]) -> dict[str, Any]:
    """Build a nested mapping from decoded ``(key, value)`` pairs.

    Repeated keys become lists in order of appearance and a trailing ``[]``
    (``tags[]=a&tags[]=b``) behaves like a repeated key.
    """
    result: dict[str, Any] = {}
    for index, (key, value) in enumerate(pairs):
        if index >= MAX_PARAMS:
            break
        if not key:
            continue

        segments = _split_key(key)
        if len(segments) > 1 and segments[-1] == "":
            segments = segments[:-1]

        container = result
        for segment in segments[:-1]:
            container = _child(container, segment)
        _merge(container, segments[-1], value)
    return result


def parse_query_string(query_string: bytes | str) -> dict[str, Any]:
    """Parse a raw (URL-encoded) query string into a nested mapping."""
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    return parse_nested_query(parse_qsl(query_string, keep_blank_values=True))


def flatten_query(query: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Inverse of ``parse_nested_query``: produce bracket-notation pairs."""
    pairs: list[tuple[str, str]] = []
    for key, value in query.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        pairs.extend(_flatten_value(name, value))
    return pairs


def _flatten_value(name: str, value: Any) -> list[tuple[str, str]]:
    if isinstance(value, Mapping):
        return flatten_query(value, prefix=name)
    if isinstance(value, (list, tuple)):
        pairs: list[tuple[str, str]] = []
        for item in value:
            pairs.extend(_flatten_value(name, item))
        return pairs
    if value is None:
        return [(name, "")]
    return [(name, str(value))]


def encode_query(query: Mapping[str, Any]) -> bytes:
    """Encode a nested mapping back into an ASGI ``query_string``."""
    return urlencode(flatten_query(query)).encode("latin-1")
