from .app import create_app
from .preferences import JsonFileStore, MemoryStore, PreferenceStore

__all__ = ["create_app", "JsonFileStore", "MemoryStore", "PreferenceStore"]
