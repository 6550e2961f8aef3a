import os
import re
import time
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from .errors import BackendError, StorageError, ValidationError
from .models import Book, Genre
from .records import to_book_record

PDF_MIME = "application/pdf"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024
MAX_DESCRIPTION_LENGTH = 500
SAFE_TITLE_LENGTH = 60


@dataclass
class UploadDetails:
    title: str = ""
    author: str = ""
    genre_id: Optional[str] = None
    description: str = ""
    is_public: bool = True

    @classmethod
    def from_form(cls, data):
        raw_public = data.get("is_public", True)
        if isinstance(raw_public, str):
            is_public = raw_public.strip().lower() not in ("false", "0", "no", "off")
        else:
            is_public = bool(raw_public)
        return cls(
            title=(data.get("title") or "").strip(),
            author=(data.get("author") or "").strip(),
            genre_id=(data.get("genre_id") or "").strip() or None,
            description=(data.get("description") or "").strip(),
            is_public=is_public,
        )

    def validate(self):
        errors = {}
        if not self.title.strip():
            errors["title"] = "Title is required"
        if not self.author.strip():
            errors["author"] = "Author is required"
        if not self.genre_id:
            errors["genre"] = "Genre is required"
        if len(self.description) > MAX_DESCRIPTION_LENGTH:
            errors["description"] = f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        return errors


@dataclass
class SelectedFile:
    stream: object
    filename: str
    content_type: str
    size: int


def stream_size(stream):
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def check_file(file_storage, max_bytes=MAX_UPLOAD_BYTES):
    if file_storage is None or not getattr(file_storage, "filename", None):
        raise ValidationError("PDF file is required", {"file": "PDF file is required"})
    if file_storage.mimetype != PDF_MIME:
        raise ValidationError("Please upload a PDF file", {"file": "Please upload a PDF file"})
    size = stream_size(file_storage.stream)
    if size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ValidationError(
            f"File size must be at most {limit_mb}MB", {"file": f"File size must be at most {limit_mb}MB"}
        )
    return SelectedFile(stream=file_storage.stream, filename=file_storage.filename, content_type=PDF_MIME, size=size)


def safe_title(title):
    return re.sub(r"[^a-zA-Z0-9]", "_", title.strip())[:SAFE_TITLE_LENGTH]


def storage_path(title, user_id=None, now_ms=None):
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    name = f"{now_ms}_{safe_title(title)}.pdf"
    return f"{user_id}/{name}" if user_id else name


class UploadWizard:
    def __init__(self, backend, identity=None, max_bytes=MAX_UPLOAD_BYTES):
        self.backend = backend
        self.identity = identity
        self.max_bytes = max_bytes
        self.step = "details"
        self.details = UploadDetails()
        self.file = None
        self.errors = {}
        self.book = None

    def default_genre_id(self):
        genre = (
            self.backend.session.query(Genre)
            .filter(Genre.is_active.is_(True))
            .order_by(Genre.sort_order.asc(), Genre.name.asc())
            .first()
        )
        return genre.id if genre else None

    def submit_details(self, details):
        self.details = details
        self.errors = details.validate()
        if not self.errors and self.backend.get(Genre, details.genre_id) is None:
            self.errors = {"genre": "Selected genre does not exist"}
        if self.errors:
            return False
        self.step = "upload"
        return True

    def back(self):
        self.step = "details"

    def select_file(self, file_storage):
        try:
            self.file = check_file(file_storage, self.max_bytes)
        except ValidationError as exc:
            self.file = None
            self.errors = dict(exc.errors)
            return False
        self.errors.pop("file", None)
        return True

    def submit(self):
        if self.identity is None:
            raise ValidationError("Please log in to upload books", {"session": "Please log in to upload books"})
        if self.step != "upload":
            raise ValidationError("Book details are incomplete", self.errors or self.details.validate())
        if self.file is None:
            raise ValidationError("Please fix the form errors before uploading", {"file": "PDF file is required"})

        storage = self.backend.storage
        path = storage_path(self.details.title, self.identity.id)
        self.file.stream.seek(0)
        try:
            stored = storage.upload(path, self.file.stream, self.file.content_type, upsert=False)
        except StorageError as exc:
            current_app.logger.error("Upload failed: %s", exc)
            raise
        file_url = storage.get_public_url(stored["path"])

        book = Book(
            title=self.details.title.strip(),
            author=self.details.author.strip(),
            description=self.details.description.strip() or None,
            file_url=file_url,
            file_name=self.file.filename,
            file_size_bytes=self.file.size,
            genre_id=self.details.genre_id,
            status="pending",
            is_public=self.details.is_public,
            upload_by=self.identity.id,
            created_by=self.identity.id,
        )
        try:
            with self.backend.mutation("insert book") as session:
                session.add(book)
        except BackendError:
            # the row never landed, so the object would be unreachable
            try:
                storage.remove(stored["path"])
            except StorageError as exc:
                current_app.logger.error("could not remove orphaned object %s: %s", stored["path"], exc)
            else:
                current_app.logger.warning("removed orphaned object %s after failed insert", stored["path"])
            raise

        self.book = to_book_record(book)
        self.step = "complete"
        current_app.logger.info("book %s uploaded by %s as %s", book.id, self.identity.email, stored["path"])
        return self.book

    def reset(self):
        self.step = "details"
        self.details = UploadDetails(genre_id=self.default_genre_id())
        self.file = None
        self.errors = {}
        self.book = None
