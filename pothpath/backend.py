from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import BackendError


class BackendClient:
    def __init__(self, db, storage, sessions, admin_emails=()):
        self.db = db
        self.storage = storage
        self.sessions = sessions
        self.admin_emails = frozenset(e.lower() for e in admin_emails)

    @property
    def session(self):
        return self.db.session

    def is_admin(self, identity):
        return bool(identity and identity.email and identity.email.lower() in self.admin_emails)

    def get(self, model, ident):
        try:
            return self.db.session.get(model, ident)
        except SQLAlchemyError as exc:
            current_app.logger.error("lookup of %s %s failed: %s", model.__tablename__, ident, exc)
            raise BackendError(f"Failed to load {model.__tablename__} row") from exc

    def fetch(self, query):
        try:
            return query.all()
        except SQLAlchemyError as exc:
            current_app.logger.error("query failed: %s", exc)
            raise BackendError("Query failed") from exc

    def count(self, query):
        try:
            return query.order_by(None).count()
        except SQLAlchemyError as exc:
            current_app.logger.error("count failed: %s", exc)
            raise BackendError("Query failed") from exc

    @contextmanager
    def mutation(self, description):
        try:
            yield self.db.session
            self.db.session.commit()
        except SQLAlchemyError as exc:
            self.db.session.rollback()
            current_app.logger.error("%s failed: %s", description, exc)
            raise BackendError(f"Failed to {description}: {exc.__class__.__name__}") from exc
        except Exception:
            self.db.session.rollback()
            raise
