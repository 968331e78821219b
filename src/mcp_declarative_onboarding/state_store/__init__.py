"""Task state and persisted onboarding state."""
from .persistence import MemoryPersistence, Persistence, YamlFilePersistence
from .store import StateStore
from .task import Task, TaskResult

__all__ = [
    "StateStore",
    "Task",
    "TaskResult",
    "Persistence",
    "MemoryPersistence",
    "YamlFilePersistence",
]
