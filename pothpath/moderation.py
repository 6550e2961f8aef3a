from flask import current_app

from .errors import BackendError, Conflict, IllegalTransition, NotFound, PermissionDenied, StorageError, ValidationError
from .models import BOOK_STATUSES, Book, BookDownload, BookView, Genre, utcnow
from .records import to_book_record
from .uploads import MAX_DESCRIPTION_LENGTH

# Single-hop, administrator-driven moves. Nothing reaches approved from
# rejected (or the reverse) without an explicit intermediate action.
TRANSITIONS = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"archived"}),
    "archived": frozenset({"approved"}),
    "rejected": frozenset(),
}


def can_transition(current, target):
    return target in TRANSITIONS.get(current, frozenset())


def reconcile_action(view_status, new_status):
    if view_status != "all" and new_status != view_status:
        return "remove"
    return "refetch"


def can_delete(book, identity, is_admin):
    if is_admin:
        return True
    return bool(identity and book.upload_by == identity.id and book.status == "pending")


def can_edit(book, identity, is_admin):
    if is_admin:
        return True
    return bool(identity and book.upload_by == identity.id)


class ModerationWorkflow:
    def __init__(self, backend):
        self.backend = backend

    def _load(self, book_id):
        book = self.backend.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found")
        return book

    def _values_for(self, target, actor_id):
        values = {"status": target, "updated_at": utcnow()}
        if target == "approved":
            values["approved_at"] = utcnow()
            values["approved_by"] = actor_id
        return values

    def transition(self, book_id, target, actor_id=None):
        if target not in BOOK_STATUSES:
            raise ValidationError("Unknown status", {"status": f"status must be one of {', '.join(BOOK_STATUSES)}"})
        book = self._load(book_id)
        if not can_transition(book.status, target):
            raise IllegalTransition(f"Cannot move a {book.status} book to {target}", [book.id])

        previous = book.status
        with self.backend.mutation("update status"):
            for key, value in self._values_for(target, actor_id).items():
                setattr(book, key, value)
        current_app.logger.info("book %s: %s -> %s", book.id, previous, target)
        return to_book_record(book)

    def approve(self, book_id, actor_id=None):
        book = self._load(book_id)
        if book.status != "pending":
            raise IllegalTransition(f"Only pending books can be approved (book is {book.status})", [book.id])
        return self.transition(book_id, "approved", actor_id)

    def reject(self, book_id, actor_id=None):
        return self.transition(book_id, "rejected", actor_id)

    def archive(self, book_id, actor_id=None):
        return self.transition(book_id, "archived", actor_id)

    def unarchive(self, book_id, actor_id=None):
        book = self._load(book_id)
        if book.status != "archived":
            raise IllegalTransition(f"Only archived books can be restored (book is {book.status})", [book.id])
        return self.transition(book_id, "approved", actor_id)

    def apply_action(self, book_id, action, actor_id=None):
        handlers = {
            "approve": self.approve,
            "reject": self.reject,
            "archive": self.archive,
            "unarchive": self.unarchive,
        }
        if action not in handlers:
            raise NotFound(f"Unknown moderation action: {action}")
        return handlers[action](book_id, actor_id)

    def bulk_transition(self, book_ids, target, actor_id=None):
        ids = list(dict.fromkeys(str(i) for i in (book_ids or []) if i))
        if not ids:
            raise ValidationError("No books selected", {"book_ids": "Select at least one book"})
        if target not in BOOK_STATUSES:
            raise ValidationError("Unknown status", {"status": f"status must be one of {', '.join(BOOK_STATUSES)}"})

        rows = self.backend.fetch(self.backend.session.query(Book.id, Book.status).filter(Book.id.in_(ids)))
        found = dict(rows)
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFound(f"{len(missing)} selected book(s) no longer exist")
        illegal = [i for i in ids if not can_transition(found[i], target)]
        if illegal:
            raise IllegalTransition(f"{len(illegal)} selected book(s) cannot move to {target}", illegal)

        with self.backend.mutation("bulk update status") as session:
            updated = (
                session.query(Book)
                .filter(Book.id.in_(ids))
                .update(self._values_for(target, actor_id), synchronize_session="fetch")
            )
        current_app.logger.info("bulk moved %s book(s) to %s", updated, target)
        return updated

    def toggle_visibility(self, book_id):
        book = self._load(book_id)
        with self.backend.mutation("toggle visibility"):
            book.is_public = not book.is_public
            book.updated_at = utcnow()
        current_app.logger.info("book %s is_public=%s", book.id, book.is_public)
        return to_book_record(book)

    def _edit_values(self, data, is_admin):
        values = {}
        errors = {}
        for name in ("title", "author"):
            if name in data:
                value = (data.get(name) or "").strip()
                if not value:
                    errors[name] = f"{name.capitalize()} is required"
                values[name] = value
        if "description" in data:
            description = (data.get("description") or "").strip()
            if len(description) > MAX_DESCRIPTION_LENGTH:
                errors["description"] = f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            values["description"] = description or None
        if "genre_id" in data:
            genre_id = data.get("genre_id") or None
            if genre_id and self.backend.get(Genre, genre_id) is None:
                errors["genre"] = "Selected genre does not exist"
            values["genre_id"] = genre_id
        if "is_public" in data:
            raw = data.get("is_public")
            values["is_public"] = raw.strip().lower() == "true" if isinstance(raw, str) else bool(raw)
        if "tags" in data:
            tags = data.get("tags") or []
            if isinstance(tags, str):
                tags = tags.split(",")
            values["tags"] = [str(t).strip() for t in tags if str(t).strip()]
        if "rating" in data and is_admin:
            rating = data.get("rating")
            try:
                rating = None if rating in (None, "") else float(rating)
            except (TypeError, ValueError):
                rating = -1
            if rating is not None and not 0 <= rating <= 5:
                errors["rating"] = "Rating must be between 0 and 5"
            values["rating"] = rating
        if errors:
            raise ValidationError("Invalid book details", errors)
        return values

    def edit(self, book_id, data, identity, is_admin=False):
        """Apply a metadata edit.

        Without ``version`` the write is last-write-wins. With it, the row is
        only updated while its version still matches, and a mismatch raises
        ``Conflict``. Either way a successful edit bumps the version.
        """
        book = self._load(book_id)
        if not can_edit(book, identity, is_admin):
            raise PermissionDenied("Only the uploader or an administrator can edit this book")
        values = self._edit_values(data, is_admin)

        expected = data.get("version")
        if expected is not None:
            try:
                expected = int(expected)
            except (TypeError, ValueError):
                raise ValidationError("Invalid version", {"version": "version must be an integer"})

        values["updated_at"] = utcnow()
        values["version"] = Book.version + 1
        with self.backend.mutation("update book") as session:
            query = session.query(Book).filter(Book.id == book.id)
            if expected is not None:
                query = query.filter(Book.version == expected)
            updated = query.update(values, synchronize_session=False)
            if not updated:
                raise Conflict("Book was modified by someone else; reload and try again")
        self.backend.session.refresh(book)
        current_app.logger.info("book %s edited by %s (version %s)", book.id, identity.email, book.version)
        return to_book_record(book)

    def delete(self, book_id, identity, is_admin=False):
        book = self._load(book_id)
        if not can_delete(book, identity, is_admin):
            raise PermissionDenied("Only the uploader of a pending book or an administrator can delete it")

        file_url = book.file_url
        with self.backend.mutation("delete book") as session:
            session.query(BookDownload).filter_by(book_id=book.id).delete()
            session.query(BookView).filter_by(book_id=book.id).delete()
            session.delete(book)

        key = self.backend.storage.key_from_public_url(file_url)
        if key:
            try:
                self.backend.storage.remove(key)
            except StorageError as exc:
                current_app.logger.warning("book %s deleted but its file was kept: %s", book_id, exc)
        current_app.logger.info("book %s deleted by %s", book_id, identity.email if identity else "unknown")
        return book_id


class ModerationBoard:
    def __init__(self, workflow, builder, state):
        self.workflow = workflow
        self.builder = builder
        self.state = state
        self.rows = []
        self.notice = None

    def refresh(self):
        self.rows = self.builder.fetch_all(self.state)
        return self.rows

    def _remove(self, ids):
        ids = set(ids)
        self.rows = [r for r in self.rows if r.id not in ids]

    def _fail(self, exc):
        current_app.logger.error("moderation action failed: %s", exc)
        self.notice = exc.message
        return False

    def _reconcile(self, ids, new_status):
        if reconcile_action(self.state.status_filter, new_status) == "remove":
            self._remove(ids)
        else:
            self.refresh()

    def transition(self, book_id, action, actor_id=None):
        self.notice = None
        try:
            record = self.workflow.apply_action(book_id, action, actor_id)
        except (BackendError, IllegalTransition, NotFound, ValidationError) as exc:
            return self._fail(exc)
        self._reconcile([book_id], record.status)
        return True

    def bulk(self, book_ids, target, actor_id=None):
        self.notice = None
        try:
            self.workflow.bulk_transition(book_ids, target, actor_id)
        except (BackendError, IllegalTransition, NotFound, ValidationError) as exc:
            return self._fail(exc)
        self._reconcile(book_ids, target)
        return True

    def toggle_visibility(self, book_id):
        self.notice = None
        try:
            self.workflow.toggle_visibility(book_id)
        except (BackendError, NotFound) as exc:
            return self._fail(exc)
        self.refresh()
        return True

    def delete(self, book_id, identity):
        self.notice = None
        try:
            self.workflow.delete(book_id, identity, is_admin=True)
        except (BackendError, NotFound, PermissionDenied) as exc:
            return self._fail(exc)
        self._remove([book_id])
        return True
