from __future__ import annotations

from typing import Iterable, List

KNOWN_TOOL_PREFIXES = (
    "get_system_",
    "search_",
    "query_",
    "fetch_",
    "create_",
    "update_",
    "delete_",
)


def _occurrences(text: str, needle: str) -> List[int]:
    found: List[int] = []
    start = text.find(needle)
    while start != -1:
        found.append(start)
        start = text.find(needle, start + 1)
    return found


def repair_tool_name(name: str, known_names: Iterable[str] = ()) -> str:
    """
    Undo tool names glued together upstream (e.g. "search_xsearch_x").

    With a catalog, the name is cut at the last known-prefix boundary that
    yields a catalog name; unknown names are left alone so the provider can
    reject them. Without a catalog, the name is cut at the first known
    prefix found past position 0.
    """
    known = set(known_names)
    if not name or name in known:
        return name

    if known:
        starts = sorted(
            {
                idx
                for prefix in KNOWN_TOOL_PREFIXES
                for idx in _occurrences(name, prefix)
                if idx > 0
            },
            reverse=True,
        )
        for idx in starts:
            if name[idx:] in known:
                return name[idx:]
        suffixes = [k for k in known if name.endswith(k)]
        if suffixes:
            return max(suffixes, key=len)
        return name

    for prefix in KNOWN_TOOL_PREFIXES:
        idx = name.find(prefix)
        if idx > 0:
            return name[idx:]
    return name


__all__ = ["KNOWN_TOOL_PREFIXES", "repair_tool_name"]
