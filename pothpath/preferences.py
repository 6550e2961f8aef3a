import json
import logging
import os
from pathlib import Path

FAVORITES_KEY = "library-favorites"
BOOKMARKS_KEY = "library-bookmarks"
VIEW_MODE_KEY = "library-view-mode"
VIEW_MODES = ("grid", "list")

logger = logging.getLogger(__name__)


class KeyValueStore:
    def get(self, key):
        raise NotImplementedError

    def set(self, key, value):
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial=None):
        self.values = dict(initial or {})

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = value


class JsonFileStore(KeyValueStore):
    def __init__(self, path):
        self.path = Path(path)

    def _read(self):
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable preference file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key):
        value = self._read().get(key)
        return None if value is None else str(value)

    def set(self, key, value):
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp, self.path)


def _load_id_set(raw, key):
    if not raw:
        return set()
    try:
        values = json.loads(raw)
    except ValueError:
        logger.warning("discarding malformed %s value", key)
        return set()
    if not isinstance(values, list):
        return set()
    return {str(v) for v in values}


class PreferenceStore:
    """Favorites, bookmarks and the library view mode.

    Read once with ``load``; each mutation is written straight back. Ids are
    never checked against the backend, so a deleted book stays in the sets.
    """

    def __init__(self, store):
        self.store = store
        self.favorites = set()
        self.bookmarks = set()
        self.view_mode = "grid"

    def load(self):
        self.favorites = _load_id_set(self.store.get(FAVORITES_KEY), FAVORITES_KEY)
        self.bookmarks = _load_id_set(self.store.get(BOOKMARKS_KEY), BOOKMARKS_KEY)
        mode = self.store.get(VIEW_MODE_KEY)
        self.view_mode = mode if mode in VIEW_MODES else "grid"
        return self

    def _save_set(self, key, values):
        self.store.set(key, json.dumps(sorted(values)))

    def toggle_favorite(self, book_id):
        book_id = str(book_id)
        if book_id in self.favorites:
            self.favorites.discard(book_id)
        else:
            self.favorites.add(book_id)
        self._save_set(FAVORITES_KEY, self.favorites)
        return book_id in self.favorites

    def toggle_bookmark(self, book_id):
        book_id = str(book_id)
        if book_id in self.bookmarks:
            self.bookmarks.discard(book_id)
        else:
            self.bookmarks.add(book_id)
        self._save_set(BOOKMARKS_KEY, self.bookmarks)
        return book_id in self.bookmarks

    def set_view_mode(self, mode):
        if mode not in VIEW_MODES:
            raise ValueError(f"view mode must be one of {', '.join(VIEW_MODES)}")
        self.view_mode = mode
        self.store.set(VIEW_MODE_KEY, mode)
