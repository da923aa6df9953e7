from .store import SQLiteStore, SQLiteStoreConfig  # noqa: F401
