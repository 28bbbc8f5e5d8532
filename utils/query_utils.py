"""Small SQL building helpers shared by the list and search services."""

from typing import Optional

MAX_LIMIT = 100


def clamp_limit(limit: Optional[int], default: int = 20) -> int:
    if limit is None:
        return default
    return max(0, min(int(limit), MAX_LIMIT))


def contains(column, term: str):
    """Case-insensitive substring match with LIKE wildcards in `term` escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")
