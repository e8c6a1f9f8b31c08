"""Pure sanitization passes applied to request query, body and path params.

Each function returns a new structure and never raises: values that are not
containers or strings are returned unchanged.

- ``strip_operator_keys`` removes document-query operators (``$gt``,
  ``$where``) and dotted keys (``a.b``) that could reach a query layer.
- ``strip_markup`` neutralizes HTML/script markup in string values.
- ``collapse_polluted_params`` resolves HTTP parameter pollution in the
  top-level query mapping.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

_OPERATOR_PATTERN = re.compile(r"^\$|\.")


def is_operator_key(key: Any) -> bool:
    """Return True when ``key`` starts with ``$`` or contains a ``.``."""
    return isinstance(key, str) and bool(_OPERATOR_PATTERN.search(key))


def strip_operator_keys(value: Any, replace_with: str | None = None) -> Any:
    """Recursively remove (or rewrite) operator-like keys.

    Args:
        value: Arbitrary JSON-like value (dict, list, scalar).
        replace_with: When given, a leading ``$`` and every ``.`` in offending
            keys are replaced with this string instead of dropping the key.
            Keys that are still operator-like after replacement are dropped.

    Returns:
        A sanitized copy of ``value``.

    Examples:
        >>> strip_operator_keys({"name": "x", "$where": "1 == 1"})
        {'name': 'x'}
        >>> strip_operator_keys({"price": {"$gt": "0"}}, replace_with="_")
        {'price': {'_gt': '0'}}
    """
    if isinstance(value, Mapping):
        cleaned: dict[Any, Any] = {}
        for key, item in value.items():
            if is_operator_key(key):
                if replace_with is None:
                    continue
                key = _OPERATOR_PATTERN.sub(replace_with, key)
                if is_operator_key(key):
                    continue
            cleaned[key] = strip_operator_keys(item, replace_with)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [strip_operator_keys(item, replace_with) for item in value]
    return value


def contains_operator_keys(value: Any) -> bool:
    """Return True when any nested mapping holds an operator-like key."""
    if isinstance(value, Mapping):
        return any(
            is_operator_key(key) or contains_operator_keys(item)
            for key, item in value.items()
        )
    if isinstance(value, (list, tuple)):
        return any(contains_operator_keys(item) for item in value)
    return False


def strip_markup(value: Any) -> Any:
    """Recursively escape ``<`` in string values.

    Escaping the opening bracket is enough to turn ``<script>`` tags and
    ``<img onerror=...>`` style handlers into inert text, and leaves strings
    without markup untouched, so the pass is idempotent.

    Examples:
        >>> strip_markup({"name": "<script>alert(1)</script>"})
        {'name': '&lt;script>alert(1)&lt;/script>'}
        >>> strip_markup("Tom & Jerry")
        'Tom & Jerry'
    """
    if isinstance(value, str):
        return value.replace("<", "&lt;")
    if isinstance(value, Mapping):
        return {key: strip_markup(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [strip_markup(item) for item in value]
    return value


def collapse_polluted_params(
    query: Mapping[str, Any],
    whitelist: Iterable[str],
) -> tuple[dict[str, Any], dict[str, list[Any]]]:
    """Collapse repeated query parameters that are not allowed to repeat.

    Args:
        query: Parsed top-level query mapping (repeated keys as lists).
        whitelist: Keys allowed to keep several values.

    Returns:
        Tuple of ``(clean_query, polluted)`` where ``polluted`` holds the
        original value lists of every collapsed key.

    Examples:
        >>> collapse_polluted_params({"sort": ["price", "rating"]}, ["duration"])
        ({'sort': 'rating'}, {'sort': ['price', 'rating']})
    """
    allowed = set(whitelist)
    clean: dict[str, Any] = {}
    polluted: dict[str, list[Any]] = {}

    for key, item in query.items():
        if isinstance(item, list) and key not in allowed and item:
            clean[key] = item[-1]
            polluted[key] = list(item)
        else:
            clean[key] = item

    return clean, polluted
