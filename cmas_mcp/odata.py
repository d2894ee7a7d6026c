"""OData expression helpers.

Pure functions that build ``$filter`` expressions and keyed paths for the
Admin Service, translate ``*``/``?`` wildcards, and strip protocol metadata
from responses. Nothing here performs I/O.
"""

from __future__ import annotations

import re
from typing import Any

WILDCARD_GLYPHS = ("*", "?")


def escape_literal(value: str) -> str:
    """Escape a string for use inside a single-quoted OData literal."""
    return value.replace("'", "''")


def quote(value: Any) -> str:
    """Render a Python value as an OData literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return f"'{escape_literal(str(value))}'"


def has_wildcard(value: str) -> bool:
    return any(glyph in value for glyph in WILDCARD_GLYPHS)


def eq(prop: str, value: Any) -> str:
    return f"{prop} eq {quote(value)}"


def and_(*clauses: str | None) -> str | None:
    """Join the non-empty clauses with ``and``; None when nothing is left."""
    parts = [c for c in clauses if c]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return " and ".join(f"({p})" if " or " in p else p for p in parts)


def wildcard_to_filter(prop: str, pattern: str) -> str | None:
    """Translate a glob pattern into an OData filter on ``prop``.

    The literal segments between glyphs become ``startswith``, ``endswith``
    and ``contains`` calls. The result may over-match (``?`` and segment
    order are not expressible), so results must be narrowed with
    :func:`wildcard_match`. A pattern made only of glyphs yields None.

    Examples:
        >>> wildcard_to_filter("Name", "Lab*")
        "startswith(Name,'Lab')"
        >>> wildcard_to_filter("Name", "*Servers")
        "endswith(Name,'Servers')"
        >>> wildcard_to_filter("Name", "*Win*")
        "contains(Name,'Win')"
    """
    if not has_wildcard(pattern):
        return eq(prop, pattern)

    segments = re.split(r"[*?]", pattern)
    clauses = []
    first, last = segments[0], segments[-1]
    if first:
        clauses.append(f"startswith({prop},{quote(first)})")
    if last:
        clauses.append(f"endswith({prop},{quote(last)})")
    for middle in segments[1:-1]:
        if middle:
            clauses.append(f"contains({prop},{quote(middle)})")
    return and_(*clauses)


def wildcard_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into an anchored, case-insensitive regex."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def wildcard_match(pattern: str, value: Any) -> bool:
    """Case-insensitive glob match, mirroring PowerShell ``-like``."""
    if value is None:
        return False
    return wildcard_to_regex(pattern).match(str(value)) is not None


def name_filter(prop: str, name: str) -> str | None:
    """Exact-match or wildcard filter, depending on the name."""
    if has_wildcard(name):
        return wildcard_to_filter(prop, name)
    return eq(prop, name)


def keyed_path(class_name: str, key: Any) -> str:
    """Path to one instance, e.g. ``wmi/SMS_Collection('SMS00001')``."""
    if isinstance(key, int) and not isinstance(key, bool):
        return f"wmi/{class_name}({key})"
    return f"wmi/{class_name}({quote(key)})"


def class_path(class_name: str) -> str:
    return f"wmi/{class_name}"


def filter_params(expression: str | None, select: list[str] | None = None) -> dict[str, str]:
    params = {}
    if expression:
        params["$filter"] = expression
    if select:
        params["$select"] = ",".join(select)
    return params


def is_metadata_key(key: str) -> bool:
    return key.startswith("__") or key.startswith("@odata")


def strip_metadata(data: Any) -> Any:
    """Recursively drop keys starting with ``__`` or ``@odata``."""
    if isinstance(data, dict):
        return {
            k: strip_metadata(v) for k, v in data.items() if not is_metadata_key(k)
        }
    if isinstance(data, list):
        return [strip_metadata(item) for item in data]
    return data


def values(response: Any) -> list[dict[str, Any]]:
    """Return the ``value`` array of an OData response as a list."""
    if response is None:
        return []
    if isinstance(response, list):
        return response
    value = response.get("value")
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
