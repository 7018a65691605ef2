from .storage import AppStorage, InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore

__all__ = ['AppStorage', 'InMemoryKeyValueStore', 'KeyValueStore', 'SQLiteKeyValueStore']
