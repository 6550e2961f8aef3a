class PothpathError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(PothpathError):
    """Input rejected before any backend call; ``errors`` is keyed by field."""

    def __init__(self, message, errors=None):
        super().__init__(message, 400)
        self.errors = dict(errors or {})

    def to_dict(self):
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class IllegalTransition(PothpathError):
    status_code = 409

    def __init__(self, message, book_ids=None):
        super().__init__(message)
        self.book_ids = list(book_ids or [])

    def to_dict(self):
        payload = super().to_dict()
        if self.book_ids:
            payload["book_ids"] = self.book_ids
        return payload


class Conflict(PothpathError):
    status_code = 409


class PermissionDenied(PothpathError):
    status_code = 403


class NotFound(PothpathError):
    status_code = 404


class BackendError(PothpathError):
    status_code = 502


class StorageError(PothpathError):
    status_code = 400


class ObjectExists(StorageError):
    status_code = 409
