from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

UNCATEGORIZED = "Uncategorized"


@dataclass
class GenreRecord:
    id: str
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    color_code: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "color_code": self.color_code,
            "is_active": self.is_active,
            "sort_order": self.sort_order,
        }


@dataclass
class BookRecord:
    id: str
    title: str
    author: str
    file_url: str
    status: str = "pending"
    is_public: bool = True
    description: Optional[str] = None
    file_name: Optional[str] = None
    file_size_bytes: Optional[int] = None
    genre_id: Optional[str] = None
    genre: Optional[GenreRecord] = None
    download_count: int = 0
    rating: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    upload_by: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    upload_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    version: int = 1

    @property
    def genre_name(self):
        return self.genre.name if self.genre else UNCATEGORIZED

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "genre_id": self.genre_id,
            "genre": {"id": self.genre.id, "name": self.genre.name, "color_code": self.genre.color_code}
            if self.genre
            else None,
            "genre_name": self.genre_name,
            "status": self.status,
            "is_public": self.is_public,
            "download_count": self.download_count,
            "rating": self.rating,
            "tags": list(self.tags),
            "upload_by": self.upload_by,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "upload_at": _iso(self.upload_at),
            "updated_at": _iso(self.updated_at),
            "approved_at": _iso(self.approved_at),
            "version": self.version,
        }


def _iso(value):
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _parse_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _field(row, name, default=None):
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


def to_genre_record(raw):
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if raw is None:
        return None
    name = _field(raw, "name")
    if not name:
        return None
    return GenreRecord(
        id=_field(raw, "id"),
        name=name,
        slug=_field(raw, "slug"),
        description=_field(raw, "description"),
        color_code=_field(raw, "color_code"),
        is_active=bool(_field(raw, "is_active", True)),
        sort_order=int(_field(raw, "sort_order", 0) or 0),
    )


def to_book_record(row):
    if isinstance(row, Mapping):
        raw_genre = row.get("genre", row.get("genres"))
    else:
        raw_genre = getattr(row, "genre", None)
    genre = to_genre_record(raw_genre)
    genre_id = _field(row, "genre_id") or (genre.id if genre else None)

    tags = _field(row, "tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]

    return BookRecord(
        id=_field(row, "id"),
        title=_field(row, "title") or "",
        author=_field(row, "author") or "",
        file_url=_field(row, "file_url") or "",
        status=_field(row, "status") or "pending",
        is_public=bool(_field(row, "is_public", True)),
        description=_field(row, "description"),
        file_name=_field(row, "file_name"),
        file_size_bytes=_field(row, "file_size_bytes"),
        genre_id=genre_id,
        genre=genre,
        download_count=int(_field(row, "download_count", 0) or 0),
        rating=_field(row, "rating"),
        tags=list(tags),
        upload_by=_field(row, "upload_by"),
        created_by=_field(row, "created_by"),
        approved_by=_field(row, "approved_by"),
        upload_at=_parse_datetime(_field(row, "upload_at")),
        updated_at=_parse_datetime(_field(row, "updated_at")),
        approved_at=_parse_datetime(_field(row, "approved_at")),
        version=int(_field(row, "version", 1) or 1),
    )
