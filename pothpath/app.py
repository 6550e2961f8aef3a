import logging
import os
import secrets
from pathlib import Path

from flask import Flask, jsonify, make_response, redirect, request, send_file, url_for

from .analytics import summarize
from .auth import SESSION_COOKIE, SessionSigner, current_identity, parse_admin_emails, require_session
from .backend import BackendClient
from .errors import BackendError, NotFound, PothpathError, ValidationError
from .genres import GenreManager
from .models import Book, BookDownload, BookView, UserProfile, db, utcnow
from .moderation import ModerationWorkflow, reconcile_action
from .queries import BookQueryBuilder, FilterState
from .records import to_book_record
from .storage import ObjectStorage
from .uploads import UploadDetails, UploadWizard


def create_app(test_config=None):
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL", "sqlite:///pothpath.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", secrets.token_hex(32))
    app.config["AUTH_SECRET"] = os.getenv("AUTH_SECRET")
    app.config["SESSION_MAX_AGE_SECONDS"] = int(os.getenv("SESSION_MAX_AGE_SECONDS", str(7 * 24 * 3600)))
    app.config["SESSION_COOKIE_SECURE"] = os.getenv("SESSION_COOKIE_SECURE", "true").lower() == "true"
    app.config["STORAGE_ROOT"] = os.getenv("STORAGE_ROOT", str(Path.cwd() / "storage"))
    app.config["STORAGE_BUCKET"] = os.getenv("STORAGE_BUCKET", "books")
    app.config["STORAGE_PUBLIC_URL"] = os.getenv("STORAGE_PUBLIC_URL", "/storage")
    app.config["STORAGE_FILE_SIZE_LIMIT"] = int(os.getenv("STORAGE_FILE_SIZE_LIMIT", str(100 * 1024 * 1024)))
    app.config["MAX_UPLOAD_MB"] = int(os.getenv("MAX_UPLOAD_MB", "50"))
    app.config["LIBRARY_PAGE_SIZE"] = int(os.getenv("LIBRARY_PAGE_SIZE", "12"))
    app.config["ALLOWED_ADMIN_EMAILS"] = os.getenv("ALLOWED_ADMIN_EMAILS", "")
    app.config["LOGIN_URL"] = os.getenv("LOGIN_URL", "/login")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    db.init_app(app)

    with app.app_context():
        db.create_all()

    storage = ObjectStorage(
        app.config["STORAGE_ROOT"],
        bucket=app.config["STORAGE_BUCKET"],
        public_base_url=app.config["STORAGE_PUBLIC_URL"],
        file_size_limit=app.config["STORAGE_FILE_SIZE_LIMIT"],
    )
    sessions = SessionSigner(
        app.config["AUTH_SECRET"] or app.config["SECRET_KEY"], app.config["SESSION_MAX_AGE_SECONDS"]
    )
    backend = BackendClient(db, storage, sessions, parse_admin_emails(app.config["ALLOWED_ADMIN_EMAILS"]))
    app.extensions["pothpath"] = backend

    builder = BookQueryBuilder(backend, page_size=app.config["LIBRARY_PAGE_SIZE"])
    workflow = ModerationWorkflow(backend)
    genres = GenreManager(backend)
    max_upload_bytes = app.config["MAX_UPLOAD_MB"] * 1024 * 1024

    @app.errorhandler(PothpathError)
    def handle_pothpath_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    def get_client_ip():
        forwarded = request.headers.get("X-Forwarded-For")
        return forwarded.split(",")[0].strip() if forwarded else (request.remote_addr or "unknown")

    def as_data():
        return request.get_json(silent=True) or request.form

    def actor():
        identity = current_identity()
        return identity, backend.is_admin(identity)

    def load_visible_book(book_id):
        book = backend.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found")
        if book.status == "approved" and book.is_public:
            return book
        identity, is_admin = actor()
        if is_admin or (identity and book.upload_by == identity.id):
            return book
        raise NotFound("Book not found")

    def record_event(model, book, description):
        identity = current_identity()
        event = model(book_id=book.id, user_id=identity.id if identity else None, ip_address=get_client_ip())
        try:
            with backend.mutation(description) as session:
                session.add(event)
                if model is BookDownload:
                    session.query(Book).filter(Book.id == book.id).update(
                        {"download_count": Book.download_count + 1}, synchronize_session=False
                    )
        except BackendError as exc:
            app.logger.warning("could not record %s for book %s: %s", description, book.id, exc)

    def genres_payload(items):
        return [g.to_dict() for g in items]

    def profile_to_dict(row):
        if row is None:
            return None
        return {
            "id": row.id,
            "email": row.email,
            "full_name": row.full_name,
            "avatar_url": row.avatar_url,
            "bio": row.bio,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }

    @app.get("/")
    def index():
        ranked = genres.popular(limit=12)
        return jsonify({"genres": [dict(g.to_dict(), book_count=count) for g, count in ranked]})

    @app.get("/genres")
    def list_genres():
        return jsonify(genres_payload(genres.list_active()))

    @app.get("/books")
    def list_books():
        state = FilterState.public(
            search_text=(request.args.get("q") or "").strip(),
            genre_id=(request.args.get("genre") or "").strip() or None,
            sort_key=(request.args.get("sort") or "newest").strip().lower(),
        )
        offset = max(request.args.get("offset", 0, type=int), 0)
        page = builder.fetch_page(state, offset=offset)
        return jsonify(page.to_dict(builder.page_size))

    @app.get("/books/<book_id>")
    def book_detail(book_id):
        book = load_visible_book(book_id)
        record_event(BookView, book, "record view")
        return jsonify(to_book_record(book).to_dict())

    @app.get("/books/<book_id>/download")
    def download_book(book_id):
        book = load_visible_book(book_id)
        record_event(BookDownload, book, "record download")
        return redirect(book.file_url)

    @app.patch("/books/<book_id>")
    @require_session()
    def edit_book(book_id):
        identity, is_admin = actor()
        record = workflow.edit(book_id, as_data(), identity, is_admin=is_admin)
        return jsonify(record.to_dict())

    @app.delete("/books/<book_id>")
    @require_session()
    def delete_book(book_id):
        identity, is_admin = actor()
        workflow.delete(book_id, identity, is_admin=is_admin)
        return jsonify({"message": "Book deleted", "id": book_id})

    @app.get("/upload")
    @require_session()
    def upload_page():
        wizard = UploadWizard(backend, current_identity(), max_bytes=max_upload_bytes)
        return jsonify(
            {
                "genres": genres_payload(genres.list_active()),
                "default_genre_id": wizard.default_genre_id(),
                "max_upload_mb": app.config["MAX_UPLOAD_MB"],
            }
        )

    @app.post("/upload/details")
    @require_session()
    def upload_details():
        wizard = UploadWizard(backend, current_identity(), max_bytes=max_upload_bytes)
        if not wizard.submit_details(UploadDetails.from_form(as_data())):
            raise ValidationError("Please fix the form errors", wizard.errors)
        return jsonify({"step": wizard.step, "details": vars(wizard.details)})

    @app.post("/upload")
    @require_session()
    def upload_book():
        wizard = UploadWizard(backend, current_identity(), max_bytes=max_upload_bytes)
        if not wizard.submit_details(UploadDetails.from_form(request.form)):
            raise ValidationError("Please fix the form errors", wizard.errors)
        if not wizard.select_file(request.files.get("file")):
            raise ValidationError(wizard.errors.get("file", "Invalid file"), wizard.errors)
        record = wizard.submit()
        return jsonify({"message": "Book uploaded and awaiting approval", "book": record.to_dict()}), 201

    @app.get("/profile")
    @require_session()
    def profile():
        identity, is_admin = actor()
        profile_row = backend.get(UserProfile, identity.id)
        uploads = backend.fetch(
            backend.session.query(Book)
            .filter(Book.upload_by == identity.id)
            .order_by(Book.upload_at.desc(), Book.id.asc())
        )
        records = [to_book_record(b) for b in uploads]
        by_status = summarize(records)["by_status"]
        return jsonify(
            {
                "user": identity.to_dict(),
                "is_admin": is_admin,
                "profile": profile_to_dict(profile_row),
                "uploads": [r.to_dict() for r in records],
                "stats": {
                    "total": len(records),
                    "by_status": by_status,
                    "total_downloads": sum(r.download_count for r in records),
                },
            }
        )

    @app.patch("/profile")
    @require_session()
    def update_profile():
        identity = current_identity()
        data = as_data()
        full_name = (data.get("full_name") or "").strip() if "full_name" in data else None
        if full_name is not None and len(full_name) > 100:
            raise ValidationError("Invalid profile", {"full_name": "Name must be at most 100 characters"})
        with backend.mutation("update profile") as session:
            row = session.get(UserProfile, identity.id)
            if row is None:
                row = UserProfile(id=identity.id, email=identity.email)
                session.add(row)
            if full_name is not None:
                row.full_name = full_name or None
            if "bio" in data:
                row.bio = (data.get("bio") or "").strip() or None
            if "avatar_url" in data:
                row.avatar_url = (data.get("avatar_url") or "").strip() or None
            row.updated_at = utcnow()
        return jsonify(profile_to_dict(row))

    @app.get("/login")
    def login_page():
        identity = current_identity()
        if identity is not None:
            return jsonify({"message": "Already signed in", "user": identity.to_dict()})
        return jsonify(
            {
                "message": "Sign in with the identity provider",
                "callback_url": url_for("auth_callback", _external=True),
            }
        )

    @app.get("/auth/callback")
    def auth_callback():
        token = (request.args.get("token") or "").strip()
        identity = sessions.read(token)
        if identity is None:
            app.logger.warning("rejected provider callback from %s", get_client_ip())
            return jsonify({"error": "Invalid or expired session token"}), 401

        with backend.mutation("create profile") as session:
            if session.get(UserProfile, identity.id) is None:
                session.add(
                    UserProfile(
                        id=identity.id,
                        email=identity.email,
                        full_name=identity.user_metadata.get("full_name"),
                        avatar_url=identity.user_metadata.get("avatar_url"),
                    )
                )
        app.logger.info("signed in %s", identity.email)

        resp = make_response(
            jsonify({"message": "Logged in", "user": identity.to_dict(), "is_admin": backend.is_admin(identity)})
        )
        resp.set_cookie(
            SESSION_COOKIE,
            token,
            httponly=True,
            secure=app.config["SESSION_COOKIE_SECURE"],
            samesite="Lax",
            max_age=app.config["SESSION_MAX_AGE_SECONDS"],
        )
        return resp

    @app.post("/auth/logout")
    def logout():
        resp = make_response(jsonify({"message": "Logged out"}))
        resp.delete_cookie(SESSION_COOKIE)
        return resp

    @app.get("/storage/<bucket>/<path:key>")
    def serve_object(bucket, key):
        if bucket != storage.bucket:
            raise NotFound("Object not found")
        return send_file(storage.open(key), mimetype="application/pdf")

    @app.get("/admin/books")
    @require_session(admin=True)
    def admin_books():
        state = FilterState.admin(
            search_text=(request.args.get("q") or "").strip(),
            status_filter=(request.args.get("status") or "pending").strip().lower(),
            sort_key=(request.args.get("sort") or "newest").strip().lower(),
        )
        rows = builder.fetch_all(state)
        return jsonify({"status": state.status_filter, "count": len(rows), "items": [r.to_dict() for r in rows]})

    @app.post("/admin/books/bulk")
    @require_session(admin=True)
    def admin_bulk():
        data = request.get_json(silent=True) or {}
        identity = current_identity()
        target = (data.get("status") or "").strip().lower()
        updated = workflow.bulk_transition(data.get("book_ids") or [], target, identity.id)
        view = (data.get("view") or "all").strip().lower()
        return jsonify({"updated": updated, "status": target, "reconcile": reconcile_action(view, target)})

    @app.post("/admin/books/<book_id>/visibility")
    @require_session(admin=True)
    def admin_toggle_visibility(book_id):
        return jsonify(workflow.toggle_visibility(book_id).to_dict())

    @app.post("/admin/books/<book_id>/<action>")
    @require_session(admin=True)
    def admin_book_action(book_id, action):
        identity = current_identity()
        record = workflow.apply_action(book_id, action, identity.id)
        view = (as_data().get("view") or request.args.get("view") or "all").strip().lower()
        return jsonify({"book": record.to_dict(), "reconcile": reconcile_action(view, record.status)})

    @app.patch("/admin/books/<book_id>")
    @require_session(admin=True)
    def admin_edit_book(book_id):
        record = workflow.edit(book_id, as_data(), current_identity(), is_admin=True)
        return jsonify(record.to_dict())

    @app.get("/admin/analytics")
    @require_session(admin=True)
    def admin_analytics():
        records = builder.fetch_all(FilterState.admin(status_filter="all"))
        summary = summarize(records)
        summary["total_views"] = backend.count(backend.session.query(BookView))
        summary["download_events"] = backend.count(backend.session.query(BookDownload))
        return jsonify(summary)

    @app.get("/admin/genres")
    @require_session(admin=True)
    def admin_genres():
        return jsonify(genres_payload(genres.list_all()))

    @app.post("/admin/genres")
    @require_session(admin=True)
    def admin_create_genre():
        data = as_data()
        record = genres.create(data.get("name"), data.get("description"), data.get("color_code"))
        return jsonify(record.to_dict()), 201

    @app.patch("/admin/genres/<genre_id>")
    @require_session(admin=True)
    def admin_update_genre(genre_id):
        return jsonify(genres.update(genre_id, as_data()).to_dict())

    @app.delete("/admin/genres/<genre_id>")
    @require_session(admin=True)
    def admin_delete_genre(genre_id):
        genres.delete(genre_id)
        return jsonify({"message": "Genre deleted", "id": genre_id})

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=True)
