"""
Local persistence for the API credential, generation history and model catalog.

Everything is stored as JSON strings in a small key-value store so that the
generation code can run against an in-memory store in tests.
"""
import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from ai.models.generation_models import ApiConfig, BackendFamily, CustomModel, HistoryRecord, ModelTag
from utils.logging_config import get_logger

logger = get_logger(__name__)

STORAGE_KEYS = {
    "API_CONFIG": "ai-drawing-api-config",
    "HISTORY": "ai-drawing-history",
    "CUSTOM_MODELS": "ai-drawing-custom-models",
}

DEFAULT_MODELS = [
    CustomModel(
        id="default-fal-flux-pro",
        name="FAL FLUX Pro",
        value="fal-ai/flux-pro",
        type=BackendFamily.FAL,
        tag=ModelTag.TEXT_TO_IMAGE,
        is_default=True,
    )
]


class KeyValueStore(ABC):
    """Minimal string key-value store"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def list_keys(self) -> List[str]:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def list_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SQLiteKeyValueStore(KeyValueStore):
    """Key-value store in a single sqlite table"""

    def __init__(self, db_path: str):
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.db_path = db_path
        self.init_database()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_database(self):
        """Create the storage table if needed"""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, value),
            )

    def list_keys(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))


class AppStorage:
    """Typed access to the persisted application state"""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._lock = threading.Lock()

    def _load_list(self, key: str) -> List[Dict[str, Any]]:
        raw = self.store.get(key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Stored value for {key} is not valid JSON, ignoring it")
            return []
        return data if isinstance(data, list) else []

    def _save_list(self, key: str, items: List[Dict[str, Any]]) -> None:
        self.store.set(key, json.dumps(items, ensure_ascii=False))

    # API config

    def get_api_config(self) -> Optional[ApiConfig]:
        raw = self.store.get(STORAGE_KEYS["API_CONFIG"])
        if not raw:
            return None
        try:
            return ApiConfig.model_validate_json(raw)
        except ValueError:
            logger.warning("Stored API config is invalid, ignoring it")
            return None

    def set_api_config(self, key: str, base_url: str = "") -> ApiConfig:
        api_config = ApiConfig(key=key, base_url=base_url)
        self.store.set(STORAGE_KEYS["API_CONFIG"], api_config.model_dump_json())
        return api_config

    def remove_api_config(self) -> None:
        self.store.remove(STORAGE_KEYS["API_CONFIG"])

    # History

    def get_history(self) -> List[HistoryRecord]:
        return [HistoryRecord.model_validate(item) for item in self._load_list(STORAGE_KEYS["HISTORY"])]

    def add_to_history(self, record: HistoryRecord) -> None:
        """Newest entries go first"""
        with self._lock:
            history = self._load_list(STORAGE_KEYS["HISTORY"])
            history.insert(0, record.model_dump())
            self._save_list(STORAGE_KEYS["HISTORY"], history)

    def remove_from_history(self, record_id: str) -> None:
        with self._lock:
            history = self._load_list(STORAGE_KEYS["HISTORY"])
            self._save_list(STORAGE_KEYS["HISTORY"], [item for item in history if item.get("id") != record_id])

    def clear_history(self) -> None:
        self.store.remove(STORAGE_KEYS["HISTORY"])

    # Model catalog

    def _load_custom_models(self) -> List[CustomModel]:
        return [CustomModel.model_validate(item) for item in self._load_list(STORAGE_KEYS["CUSTOM_MODELS"])]

    def get_custom_models(self) -> List[CustomModel]:
        """Built-in models first, then user entries, de-duplicated by id"""
        seen = set()
        models = []
        for model in DEFAULT_MODELS + self._load_custom_models():
            if model.id in seen:
                continue
            seen.add(model.id)
            models.append(model)
        return models

    def find_model(self, value: str) -> Optional[CustomModel]:
        for model in self.get_custom_models():
            if model.value == value or model.id == value:
                return model
        return None

    def add_custom_model(self, model: CustomModel) -> None:
        with self._lock:
            models = self._load_list(STORAGE_KEYS["CUSTOM_MODELS"])
            models.append(model.model_dump(mode="json"))
            self._save_list(STORAGE_KEYS["CUSTOM_MODELS"], models)

    def remove_custom_model(self, model_id: str) -> None:
        with self._lock:
            models = self._load_list(STORAGE_KEYS["CUSTOM_MODELS"])
            self._save_list(STORAGE_KEYS["CUSTOM_MODELS"], [m for m in models if m.get("id") != model_id])

    def update_custom_model(self, model_id: str, **changes) -> Optional[CustomModel]:
        with self._lock:
            models = self._load_custom_models()
            for index, model in enumerate(models):
                if model.id == model_id:
                    updated = model.model_copy(update=changes)
                    models[index] = updated
                    self._save_list(
                        STORAGE_KEYS["CUSTOM_MODELS"],
                        [m.model_dump(mode="json") for m in models],
                    )
                    return updated
        return None
