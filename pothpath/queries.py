from dataclasses import dataclass, field, replace
from typing import List, Optional

from flask import current_app
from sqlalchemy import or_

from .errors import BackendError, ValidationError
from .models import BOOK_STATUSES, Book
from .records import BookRecord, to_book_record

SORT_KEYS = ("newest", "oldest", "az", "popular")
STATUS_FILTERS = BOOK_STATUSES + ("all",)
DEFAULT_PAGE_SIZE = 12


@dataclass(frozen=True)
class FilterState:
    search_text: str = ""
    genre_id: Optional[str] = None
    sort_key: str = "newest"
    status_filter: str = "approved"
    public_only: bool = True

    @classmethod
    def public(cls, search_text="", genre_id=None, sort_key="newest"):
        return cls(search_text=search_text or "", genre_id=genre_id or None, sort_key=sort_key or "newest")

    @classmethod
    def admin(cls, search_text="", status_filter="pending", sort_key="newest"):
        return cls(
            search_text=search_text or "",
            sort_key=sort_key or "newest",
            status_filter=status_filter or "pending",
            public_only=False,
        )

    def validate(self):
        errors = {}
        if self.sort_key not in SORT_KEYS:
            errors["sort"] = f"sort must be one of {', '.join(SORT_KEYS)}"
        if self.status_filter not in STATUS_FILTERS:
            errors["status"] = f"status must be one of {', '.join(STATUS_FILTERS)}"
        if self.public_only and self.status_filter != "approved":
            errors["status"] = "public listings only show approved books"
        if errors:
            raise ValidationError("Invalid filter", errors)
        return self


@dataclass
class ResultPage:
    rows: List[BookRecord] = field(default_factory=list)
    total_count: Optional[int] = None
    offset: int = 0
    has_more: bool = False

    def to_dict(self, limit):
        return {
            "items": [r.to_dict() for r in self.rows],
            "pagination": {
                "offset": self.offset,
                "limit": limit,
                "total": self.total_count,
                "has_more": self.has_more,
            },
        }


def _like_pattern(term):
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class BookQueryBuilder:
    def __init__(self, backend, page_size=DEFAULT_PAGE_SIZE):
        self.backend = backend
        self.page_size = page_size

    def build(self, state):
        state.validate()
        query = self.backend.session.query(Book)

        if state.public_only:
            query = query.filter(Book.status == "approved", Book.is_public.is_(True))
        elif state.status_filter != "all":
            query = query.filter(Book.status == state.status_filter)

        if state.genre_id:
            query = query.filter(Book.genre_id == state.genre_id)

        term = (state.search_text or "").strip()
        if term:
            pattern = _like_pattern(term)
            query = query.filter(
                or_(
                    Book.title.ilike(pattern, escape="\\"),
                    Book.author.ilike(pattern, escape="\\"),
                    Book.description.ilike(pattern, escape="\\"),
                )
            )

        if state.sort_key == "newest":
            query = query.order_by(Book.upload_at.desc())
        elif state.sort_key == "oldest":
            query = query.order_by(Book.upload_at.asc())
        elif state.sort_key == "az":
            query = query.order_by(Book.title.asc())
        elif state.sort_key == "popular":
            query = query.order_by(Book.download_count.desc(), Book.upload_at.desc())
        return query.order_by(Book.id.asc())

    def fetch_page(self, state, offset=0, limit=None, with_count=True):
        limit = limit or self.page_size
        offset = max(int(offset or 0), 0)
        query = self.build(state)
        try:
            total = self.backend.count(query) if with_count else None
            rows = [to_book_record(r) for r in self.backend.fetch(query.offset(offset).limit(limit))]
        except BackendError as exc:
            current_app.logger.error("Error fetching books: %s", exc)
            return ResultPage(rows=[], total_count=None, offset=offset, has_more=False)

        if total is not None:
            has_more = offset + len(rows) < total
        else:
            has_more = len(rows) == limit
        return ResultPage(rows=rows, total_count=total, offset=offset, has_more=has_more)

    def fetch_all(self, state):
        try:
            return [to_book_record(r) for r in self.backend.fetch(self.build(state))]
        except BackendError as exc:
            current_app.logger.error("Error fetching books: %s", exc)
            return []


@dataclass(frozen=True)
class FetchTicket:
    generation: int
    offset: int
    reset: bool


class LibraryListing:
    def __init__(self, builder, state=None):
        self.builder = builder
        self.state = state or FilterState()
        self.rows = []
        self.total_count = None
        self.has_more = True
        self.generation = 0

    @property
    def ids(self):
        return [r.id for r in self.rows]

    def begin(self, reset=False):
        if reset:
            self.generation += 1
            self.rows = []
            self.total_count = None
            self.has_more = True
        return FetchTicket(generation=self.generation, offset=0 if reset else len(self.rows), reset=reset)

    def complete(self, ticket, page):
        if ticket.generation != self.generation:
            current_app.logger.debug(
                "discarding stale page (generation %s, current %s)", ticket.generation, self.generation
            )
            return False
        self.rows = list(page.rows) if ticket.reset else self.rows + list(page.rows)
        self.total_count = page.total_count
        self.has_more = page.has_more
        return True

    def _run(self, reset):
        ticket = self.begin(reset=reset)
        page = self.builder.fetch_page(self.state, offset=ticket.offset)
        self.complete(ticket, page)
        return self.rows

    def refresh(self):
        return self._run(reset=True)

    def apply_filters(self, **changes):
        self.state = replace(self.state, **changes).validate()
        return self.refresh()

    def load_more(self):
        if not self.has_more:
            return self.rows
        return self._run(reset=False)
