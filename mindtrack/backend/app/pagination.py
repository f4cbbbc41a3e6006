from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, List, Tuple

from sqlalchemy.orm import Query

MAX_PAGE_SIZE = 100


@dataclass
class PageInfo:
    current_page: int
    total_pages: int
    total: int
    has_next: bool
    has_prev: bool

    def to_dict(self) -> dict:
        return asdict(self)


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], PageInfo]:
    page = max(1, page)
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    skip = (page - 1) * limit
    total = query.order_by(None).count()
    items = query.offset(skip).limit(limit).all()
    return items, PageInfo(
        current_page=page,
        total_pages=math.ceil(total / limit) if total else 0,
        total=total,
        has_next=skip + len(items) < total,
        has_prev=page > 1,
    )
