from __future__ import annotations

from stockroom.errors import ValidationFailure

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def page_args(args) -> tuple[int, int]:
    """Read ?page=&limit= from request.args (1-indexed, limit capped at 100)."""
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", DEFAULT_LIMIT))
    except (TypeError, ValueError):
        raise ValidationFailure("page and limit must be integers")
    return max(page, 1), min(max(limit, 1), MAX_LIMIT)


def pagination_meta(*, page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit if total > 0 else 1
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def paginate(query, *, page: int, limit: int) -> tuple[list, dict]:
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, pagination_meta(page=page, limit=limit, total=total)
