"""
Shared list/query helpers for the owned collections.

Every list endpoint goes through ``owned`` so the owner filter is always
present, then narrows with equality filters, an optional search, a sort and
a page window.
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from fastapi import Query
from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.orm import Session

from .errors import NotFound


@dataclass
class PageParams:
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page:
    items: list
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> dict:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def page_params(default_limit: int, max_limit: int) -> Callable[..., PageParams]:
    """Build a dependency that reads ``page``/``limit`` with per-resource bounds."""

    def dependency(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=default_limit, ge=1, le=max_limit),
    ) -> PageParams:
        return PageParams(page=page, limit=limit)

    return dependency


def owned(db: Session, model, user_id: str):
    return db.query(model).filter(model.user_id == user_id)


def get_owned(db: Session, model, obj_id: str, user_id: str, what: str):
    """Load one document through the owner filter.

    Foreign and missing ids both come back as ``NotFound``.
    """
    obj = owned(db, model, user_id).filter(model.id == obj_id).first()
    if obj is None:
        raise NotFound(f"{what} not found", code=f"{what.upper()}_NOT_FOUND")
    return obj


def paginate(query, params: PageParams) -> Page:
    total = query.order_by(None).count()
    items = query.offset(params.offset).limit(params.limit).all()
    return Page(items=items, page=params.page, limit=params.limit, total=total)


def paginate_list(items: Sequence[Any], params: PageParams) -> Page:
    window = list(items[params.offset:params.offset + params.limit])
    return Page(items=window, page=params.page, limit=params.limit, total=len(items))


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _element_ilike(col, pattern: str, dialect: str):
    """EXISTS over the elements of a JSON string array, each matched on its own."""
    if dialect.startswith("postgres"):
        elements = func.json_array_elements_text(col).table_valued("value")
    else:
        elements = func.json_each(col).table_valued("value")
    return select(elements.c.value).where(elements.c.value.ilike(pattern, escape="\\")).exists()


def substring_filter(term: str, *columns, json_columns: Iterable = (), dialect: str = "sqlite"):
    """Case-insensitive substring match OR'ed across text columns and JSON tag arrays."""
    pattern = _like_pattern(term)
    clauses = [col.ilike(pattern, escape="\\") for col in columns]
    clauses += [_element_ilike(col, pattern, dialect) for col in json_columns]
    return or_(*clauses)


def sort_clause(column, order: str):
    return asc(column) if order == "asc" else desc(column)


def search_terms(text: str) -> list[str]:
    return [t for t in re.split(r"\s+", (text or "").lower()) if t]


def relevance(terms: Sequence[str], title: str, content: str, tags: Sequence[str]) -> int:
    title_l = (title or "").lower()
    content_l = (content or "").lower()
    tags_l = [t.lower() for t in tags or []]
    score = 0
    for term in terms:
        score += 3 * title_l.count(term)
        score += 2 * sum(1 for t in tags_l if term in t)
        score += content_l.count(term)
    return score


def ranked_search(
    db: Session,
    query,
    model,
    text: str,
    params: PageParams,
    title_col,
    content_col,
    tags_col,
) -> Page:
    """Full-text search returning its own relevance order.

    PostgreSQL uses ``to_tsvector``/``ts_rank``; other backends match any
    term by substring and rank in Python (title 3, tag 2, content 1).
    """
    terms = search_terms(text)
    if not terms:
        return paginate(query, params)

    dialect = db.get_bind().dialect.name
    if dialect.startswith("postgres"):
        document = func.to_tsvector("english", func.coalesce(title_col, "") + " " + func.coalesce(content_col, ""))
        ts_query = func.plainto_tsquery("english", text)
        ranked = query.filter(document.op("@@")(ts_query)).order_by(desc(func.ts_rank(document, ts_query)))
        return paginate(ranked, params)

    candidates = query.filter(
        or_(*[
            substring_filter(t, title_col, content_col, json_columns=[tags_col], dialect=dialect)
            for t in terms
        ])
    ).all()
    scored = [
        (relevance(terms, getattr(obj, title_col.key), getattr(obj, content_col.key), getattr(obj, tags_col.key)), obj)
        for obj in candidates
    ]
    # stable sort keeps the caller's order among equal scores
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return paginate_list([obj for score, obj in scored if score > 0], params)


def normalize_tags(tags: Optional[Iterable[str]], lower: bool = False) -> list[str]:
    out: list[str] = []
    for tag in tags or []:
        tag = (tag or "").strip()
        if lower:
            tag = tag.lower()
        if tag and tag not in out:
            out.append(tag)
    return out
