import re

from flask import current_app
from sqlalchemy import func

from .errors import Conflict, NotFound, ValidationError
from .models import Book, Genre, utcnow
from .records import to_genre_record

COLOR_RE = re.compile(r"^#?[0-9a-fA-F]{6}$")


def create_slug(name):
    return "-".join(name.lower().split())


def normalize_color(raw):
    if raw is None or str(raw).strip() == "":
        return None
    value = str(raw).strip()
    if not COLOR_RE.match(value):
        raise ValidationError("Invalid color", {"color_code": "Color must be six hex digits, e.g. #3b82f6"})
    return "#" + value.lstrip("#").lower()


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


class GenreManager:
    def __init__(self, backend):
        self.backend = backend

    def list_active(self):
        query = (
            self.backend.session.query(Genre)
            .filter(Genre.is_active.is_(True))
            .order_by(Genre.sort_order.asc(), Genre.name.asc())
        )
        return [to_genre_record(g) for g in self.backend.fetch(query)]

    def list_all(self):
        query = self.backend.session.query(Genre).order_by(Genre.sort_order.asc(), Genre.name.asc())
        return [to_genre_record(g) for g in self.backend.fetch(query)]

    def popular(self, limit=12):
        book_count = func.count(Book.id)
        query = (
            self.backend.session.query(Genre, book_count)
            .join(Book, Book.genre_id == Genre.id)
            .filter(Genre.is_active.is_(True), Book.status == "approved", Book.is_public.is_(True))
            .group_by(Genre.id)
            .order_by(book_count.desc(), Genre.name.asc())
            .limit(limit)
        )
        return [(to_genre_record(g), int(count)) for g, count in self.backend.fetch(query)]

    def _load(self, genre_id):
        genre = self.backend.get(Genre, genre_id)
        if genre is None:
            raise NotFound("Genre not found")
        return genre

    def _check_unique(self, name, exclude_id=None):
        query = self.backend.session.query(Genre).filter(func.lower(Genre.name) == name.lower())
        if exclude_id:
            query = query.filter(Genre.id != exclude_id)
        if self.backend.count(query):
            raise Conflict(f"A genre named {name!r} already exists")

    def create(self, name, description=None, color_code=None):
        name = (name or "").strip()
        if not name:
            raise ValidationError("Genre name is required", {"name": "Genre name is required"})
        self._check_unique(name)
        genre = Genre(
            name=name,
            slug=create_slug(name),
            description=(description or "").strip() or None,
            color_code=normalize_color(color_code),
            sort_order=self.backend.count(self.backend.session.query(Genre)),
        )
        with self.backend.mutation("create genre") as session:
            session.add(genre)
        current_app.logger.info("genre %s created (%s)", genre.id, genre.name)
        return to_genre_record(genre)

    def update(self, genre_id, data):
        genre = self._load(genre_id)
        changes = {}
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("Genre name is required", {"name": "Genre name is required"})
            if name != genre.name:
                self._check_unique(name, exclude_id=genre.id)
                changes["name"] = name
                changes["slug"] = create_slug(name)
        if "description" in data:
            changes["description"] = (data.get("description") or "").strip() or None
        if "color_code" in data:
            changes["color_code"] = normalize_color(data.get("color_code"))
        if "is_active" in data:
            changes["is_active"] = _as_bool(data.get("is_active"))
        if "sort_order" in data:
            try:
                changes["sort_order"] = int(data.get("sort_order"))
            except (TypeError, ValueError):
                raise ValidationError("Invalid sort order", {"sort_order": "sort_order must be an integer"})

        if changes:
            with self.backend.mutation("update genre"):
                for key, value in changes.items():
                    setattr(genre, key, value)
                genre.updated_at = utcnow()
            current_app.logger.info("genre %s updated: %s", genre.id, ", ".join(sorted(changes)))
        return to_genre_record(genre)

    def delete(self, genre_id):
        genre = self._load(genre_id)
        with self.backend.mutation("delete genre") as session:
            orphaned = (
                session.query(Book)
                .filter(Book.genre_id == genre.id)
                .update({"genre_id": None}, synchronize_session="fetch")
            )
            session.delete(genre)
        current_app.logger.info("genre %s deleted; %s book(s) now uncategorized", genre_id, orphaned)
        return genre_id
