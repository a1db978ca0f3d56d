from __future__ import annotations

import math
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.orm import Query

MAX_LIMIT = 100


def clamp_page(page: int | None, limit: int | None, default_limit: int = 10) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    return page, min(limit, MAX_LIMIT)


def like_pattern(search: str) -> str:
    """Escape LIKE wildcards so user input only ever matches literally."""
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def search_filter(search: str | None, *columns):
    s = (search or "").strip()
    if not s:
        return None
    pattern = like_pattern(s)
    return or_(*[c.ilike(pattern, escape="\\") for c in columns])


def paginate(q: Query, page: int, limit: int, serialize: Callable) -> dict:
    total = q.order_by(None).count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serialize(x) for x in items],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if limit else 0,
        },
    }
