from datetime import datetime, timedelta, timezone

import pytest

from pothpath import create_app
from pothpath.auth import Identity
from pothpath.models import Book, Genre, db

ADMIN_EMAIL = "admin@example.com"
PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'pothpath.db'}",
            "SECRET_KEY": "test-secret",
            "AUTH_SECRET": "provider-secret",
            "SESSION_COOKIE_SECURE": False,
            "STORAGE_ROOT": str(tmp_path / "storage"),
            "ALLOWED_ADMIN_EMAILS": ADMIN_EMAIL,
            "LIBRARY_PAGE_SIZE": 3,
            "MAX_UPLOAD_MB": 1,
        }
    )
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture()
def backend(app):
    return app.extensions["pothpath"]


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def user():
    return Identity(id="user-1", email="reader@example.com", user_metadata={"full_name": "Rea Der"})


@pytest.fixture()
def other_user():
    return Identity(id="user-2", email="someone@example.com")


@pytest.fixture()
def admin():
    return Identity(id="admin-1", email=ADMIN_EMAIL)


def login(client, backend, identity):
    token = backend.sessions.issue(identity)
    resp = client.get(f"/auth/callback?token={token}")
    assert resp.status_code == 200
    return token


def make_genre(name="Science", sort_order=0, **fields):
    genre = Genre(name=name, slug="-".join(name.lower().split()), sort_order=sort_order, **fields)
    db.session.add(genre)
    db.session.commit()
    return genre


def make_book(title="A Book", author="An Author", genre=None, status="approved", minutes=0, **fields):
    fields.setdefault("file_url", f"/storage/books/{title.replace(' ', '_')}.pdf")
    fields.setdefault("genre_id", genre.id if genre else None)
    book = Book(
        title=title,
        author=author,
        status=status,
        upload_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )
    db.session.add(book)
    db.session.commit()
    return book
