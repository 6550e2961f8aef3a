import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy


db = SQLAlchemy()

BOOK_STATUSES = ("pending", "approved", "rejected", "archived")


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class Genre(db.Model):
    __tablename__ = "genres"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False, unique=True)
    slug = db.Column(db.String(140), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    color_code = db.Column(db.String(7), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (db.CheckConstraint("length(name) > 0", name="ck_genres_name_not_empty"),)


class Book(db.Model):
    __tablename__ = "books"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(255), nullable=False, index=True)
    author = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    file_url = db.Column(db.Text, nullable=False)
    file_name = db.Column(db.String(255), nullable=True)
    file_size_bytes = db.Column(db.BigInteger, nullable=True)
    genre_id = db.Column(db.String(36), db.ForeignKey("genres.id", ondelete="SET NULL"), nullable=True, index=True)
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    is_public = db.Column(db.Boolean, nullable=False, default=True)
    download_count = db.Column(db.Integer, nullable=False, default=0)
    rating = db.Column(db.Float, nullable=True)
    tags = db.Column(db.JSON, nullable=True)
    upload_by = db.Column(db.String(64), nullable=True, index=True)
    created_by = db.Column(db.String(64), nullable=True, index=True)
    approved_by = db.Column(db.String(64), nullable=True)
    upload_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    genre = db.relationship("Genre", lazy="joined")

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'archived')", name="ck_books_status"
        ),
        db.CheckConstraint("download_count >= 0", name="ck_books_download_count"),
        db.CheckConstraint("rating IS NULL OR (rating >= 0 AND rating <= 5)", name="ck_books_rating"),
        db.CheckConstraint("length(title) > 0", name="ck_books_title_not_empty"),
        db.Index("idx_books_status_upload_at", "status", "upload_at"),
    )


class BookDownload(db.Model):
    __tablename__ = "book_downloads"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    book_id = db.Column(db.String(36), db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    downloaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = db.Column(db.String(64), nullable=True)


class BookView(db.Model):
    __tablename__ = "book_views"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    book_id = db.Column(db.String(36), db.ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = db.Column(db.String(64), nullable=True)


class UserProfile(db.Model):
    __tablename__ = "user_profiles"

    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    full_name = db.Column(db.String(100), nullable=True)
    avatar_url = db.Column(db.Text, nullable=True)
    bio = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
