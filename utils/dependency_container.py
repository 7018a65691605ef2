"""
Dependency injection container for the generation CLI
"""
from typing import Optional
from dataclasses import dataclass

from ai.orchestrator import GenerationOrchestrator
from data.storage import AppStorage, KeyValueStore, SQLiteKeyValueStore


@dataclass
class AppDependencies:
    """Container for all application dependencies"""
    storage: AppStorage
    orchestrator: GenerationOrchestrator

    @classmethod
    def create_defaults(cls, store: Optional[KeyValueStore] = None) -> 'AppDependencies':
        """Factory method to create default dependencies"""
        if store is None:
            from config import STORAGE_PATH
            store = SQLiteKeyValueStore(STORAGE_PATH)

        storage = AppStorage(store)
        return cls(
            storage=storage,
            orchestrator=GenerationOrchestrator(storage),
        )


# Global dependency container
_deps: Optional[AppDependencies] = None

def get_dependencies() -> AppDependencies:
    """Get global dependencies"""
    if _deps is None:
        raise RuntimeError("Dependencies not initialized. Call init_dependencies() first.")
    return _deps

def init_dependencies(store: Optional[KeyValueStore] = None) -> AppDependencies:
    """Initialize global dependencies"""
    global _deps
    _deps = AppDependencies.create_defaults(store)
    return _deps

def set_dependencies(deps: Optional[AppDependencies]) -> None:
    """Set global dependencies (for testing)"""
    global _deps
    _deps = deps
