# Overview: Offset pagination helpers shared by the list endpoints.

from __future__ import annotations

import math

from ..errors import ValidationError


DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def parse_page_args(page, limit) -> tuple[int, int]:
    """Coerce page/limit query values; page >= 1, 1 <= limit <= MAX_LIMIT."""
    try:
        page = int(page) if page not in (None, "") else 1
        limit = int(limit) if limit not in (None, "") else DEFAULT_LIMIT
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    page = max(page, 1)
    limit = max(1, min(limit, MAX_LIMIT))
    return page, limit


def paginate(query, page=1, limit=DEFAULT_LIMIT) -> tuple[list, dict]:
    """
    Apply offset pagination to a query.

    Returns (rows, pagination) where pagination is {total, page, limit, pages}
    and pages = ceil(total / limit).
    """
    page, limit = parse_page_args(page, limit)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
