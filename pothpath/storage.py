import os
import uuid
from pathlib import Path

from werkzeug.utils import secure_filename

from .errors import NotFound, ObjectExists, StorageError


class ObjectStorage:
    def __init__(self, root, bucket="books", public_base_url="/storage", allowed_mime_types=("application/pdf",),
                 file_size_limit=100 * 1024 * 1024):
        self.bucket = bucket
        self.bucket_root = (Path(root) / bucket).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.allowed_mime_types = tuple(allowed_mime_types)
        self.file_size_limit = file_size_limit
        self.bucket_root.mkdir(parents=True, exist_ok=True)

    def normalize_key(self, key):
        segments = [secure_filename(part) for part in str(key or "").split("/") if part.strip()]
        if not segments or not all(segments):
            raise StorageError(f"Invalid object path: {key!r}")
        return "/".join(segments)

    def _path_for(self, key):
        return self.bucket_root.joinpath(*self.normalize_key(key).split("/"))

    def exists(self, key):
        return self._path_for(key).is_file()

    def upload(self, key, stream, content_type, upsert=False):
        if content_type not in self.allowed_mime_types:
            raise StorageError(f"mime type {content_type} is not supported")
        key = self.normalize_key(key)
        target = self._path_for(key)
        if target.exists() and not upsert:
            raise ObjectExists("The resource already exists")

        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f"{target.name}.{os.getpid()}.{uuid.uuid4().hex}.part")
        written = 0
        try:
            with open(partial, "wb") as out:
                while True:
                    chunk = stream.read(64 * 1024)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.file_size_limit:
                        break
                    out.write(chunk)
            if written > self.file_size_limit:
                raise StorageError("The object exceeded the maximum allowed size")
            if upsert:
                os.replace(partial, target)
            else:
                # fails with FileExistsError if another upload placed the key first
                os.link(partial, target)
        except FileExistsError:
            raise ObjectExists("The resource already exists") from None
        except OSError as exc:
            raise StorageError(f"Could not store {key}: {exc}") from exc
        finally:
            partial.unlink(missing_ok=True)
        return {"path": key, "size": written}

    def get_public_url(self, key):
        return f"{self.public_base_url}/{self.bucket}/{self.normalize_key(key)}"

    def key_from_public_url(self, url):
        prefix = f"{self.public_base_url}/{self.bucket}/"
        if not url or not url.startswith(prefix):
            return None
        return url[len(prefix):]

    def open(self, key):
        path = self._path_for(key)
        if not path.is_file():
            raise NotFound("Object not found")
        return path

    def remove(self, key):
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not remove {key}: {exc}") from exc
