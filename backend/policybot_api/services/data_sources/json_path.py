from __future__ import annotations

import re
from typing import Any


_INDEX_RE = re.compile(r"\[(\d+)\]")
_KEY_RE = re.compile(r"^[^\[\]\*\?@\$\(\)]+$")


class JsonPathError(ValueError):
    pass


def split_path(path: str | None) -> list[str]:
    """
    Split a restricted JSONPath into key/index tokens.

    Supported: `$`, dotted keys and `[n]` numeric indices, e.g. `$.data.items[0].name`.
    Wildcards, filters, slices and recursive descent are rejected.
    """
    raw = (path or "").strip()
    if raw in {"", "$"}:
        return []
    if ".." in raw:
        raise JsonPathError(f"recursive descent is not supported: {path}")
    if raw.startswith("$."):
        raw = raw[2:]
    elif raw.startswith("$"):
        raw = raw[1:]

    tokens: list[str] = []
    for segment in raw.split("."):
        if segment == "":
            continue
        head, _, rest = segment.partition("[")
        if head:
            if not _KEY_RE.match(head):
                raise JsonPathError(f"unsupported path segment: {segment}")
            tokens.append(head)
        if rest:
            indices = "[" + rest
            consumed = 0
            for m in _INDEX_RE.finditer(indices):
                if m.start() != consumed:
                    break
                tokens.append(m.group(1))
                consumed = m.end()
            if consumed != len(indices):
                raise JsonPathError(f"unsupported path segment: {segment}")
    return tokens


def walk(document: Any, tokens: list[str]) -> Any:
    current = document
    for token in tokens:
        if current is None:
            return None
        if isinstance(current, list):
            if not token.isdigit():
                return None
            index = int(token)
            if index >= len(current):
                return None
            current = current[index]
        elif isinstance(current, dict):
            if token not in current:
                return None
            current = current[token]
        else:
            return None
    return current


def extract_by_path(document: Any, path: str | None) -> Any:
    """Return the value at `path`, or None when any step is missing."""
    return walk(document, split_path(path))
