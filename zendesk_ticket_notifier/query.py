from __future__ import annotations

import re
from typing import Optional, Sequence

# Search syntax delimiters (',' separates tags, ':' separates field and value) plus quote and backslash.
_NEEDS_QUOTING = re.compile(r'[\s,:"\\]')


def quote_search_value(value: str) -> str:
    if not _NEEDS_QUOTING.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_search_query(
    base_query: str,
    tags: Sequence[str],
    group_id: Optional[int],
    status_ids: Sequence[int],
) -> str:
    parts: list[str] = []

    base = (base_query or "").strip()
    if base:
        parts.append(base)

    cleaned_tags = [tag.strip() for tag in tags if tag and tag.strip()]
    if cleaned_tags:
        parts.append("tags:" + ",".join(quote_search_value(tag) for tag in cleaned_tags))

    if group_id is not None:
        parts.append(f"group:{int(group_id)}")

    if status_ids:
        parts.append(" ".join(f"custom_status_id:{int(status_id)}" for status_id in status_ids))

    return " ".join(parts)
