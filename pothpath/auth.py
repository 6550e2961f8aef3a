from dataclasses import dataclass, field
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, redirect, request
from itsdangerous import BadData, URLSafeTimedSerializer

SESSION_COOKIE = "session_token"


@dataclass
class Identity:
    id: str
    email: str
    user_metadata: dict = field(default_factory=dict)
    created_at: Optional[str] = None

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
            "created_at": self.created_at,
        }


class SessionSigner:
    def __init__(self, secret, max_age):
        self.max_age = max_age
        self.serializer = URLSafeTimedSerializer(secret, salt="pothpath-session")

    def issue(self, identity):
        return self.serializer.dumps(identity.to_dict())

    def read(self, token):
        if not token:
            return None
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except BadData:
            return None
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        return Identity(
            id=str(payload["id"]),
            email=(payload.get("email") or "").strip().lower(),
            user_metadata=payload.get("user_metadata") or {},
            created_at=payload.get("created_at"),
        )


def parse_admin_emails(raw):
    return frozenset(e.strip().lower() for e in (raw or "").split(",") if e.strip())


def session_token_from_request():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


def current_identity():
    if "identity" not in g:
        backend = current_app.extensions["pothpath"]
        g.identity = backend.sessions.read(session_token_from_request())
    return g.identity


def require_session(admin=False):
    def decorator(fn):
        @wraps(fn)
        def wrapped(*args, **kwargs):
            identity = current_identity()
            if identity is None:
                return redirect(current_app.config["LOGIN_URL"])
            if admin and not current_app.extensions["pothpath"].is_admin(identity):
                current_app.logger.warning("admin access denied for %s", identity.email)
                return jsonify({"error": "Access denied"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
