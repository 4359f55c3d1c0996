"""Compact tabular notation for prompt payloads.

Uniform lists of objects are rendered as one header plus one row per item
(``key[count]{a, b}`` then ``1, 2``), which costs far fewer tokens than JSON.
Nested mappings use YAML-like indentation and scalars stay inline.
"""

import json
import re
from typing import Any

_NEEDS_QUOTES = re.compile(r"[:,{}\[\]\n]")


def to_toon(data: Any) -> str:
    """Render ``data`` in compact notation."""
    if isinstance(data, list) and _is_uniform_object_list(data):
        return _table("root", data, indent="")
    return _convert(data, 0)


def _convert(data: Any, level: int) -> str:
    indent = "  " * level

    if data is None:
        return "null"

    if isinstance(data, list):
        if not data:
            return "[]"
        return "\n".join(f"{indent}- {_convert(item, level + 1).lstrip()}" for item in data)

    if not isinstance(data, dict):
        return _scalar(data)

    lines = []
    for key, value in data.items():
        if isinstance(value, list) and _is_uniform_object_list(value):
            lines.append(_table(key, value, indent))
        elif isinstance(value, (dict, list)):
            rendered = _convert(value, level + 1)
            if rendered in ("[]", "{}"):
                lines.append(f"{indent}{key}: {rendered}")
            else:
                lines.append(f"{indent}{key}:\n{rendered}")
        else:
            lines.append(f"{indent}{key}: {_convert(value, level + 1)}")

    return "\n".join(lines) if lines else "{}"


def _table(name: str, rows: list[dict[str, Any]], indent: str) -> str:
    keys = list(rows[0].keys())
    lines = [f"{indent}{name}[{len(rows)}]{{{', '.join(keys)}}}"]
    for row in rows:
        lines.append(indent + ", ".join(_scalar(row.get(k)) for k in keys))
    return "\n".join(lines)


def _is_uniform_object_list(items: list[Any]) -> bool:
    if not items or not isinstance(items[0], dict):
        return False
    keys = set(items[0].keys())
    return all(isinstance(item, dict) and set(item.keys()) == keys for item in items[1:])


def _scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        if value == "":
            return '""'
        if _NEEDS_QUOTES.search(value):
            return json.dumps(value, ensure_ascii=False)
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)
