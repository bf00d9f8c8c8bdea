from healthsync.storage.base import HealthStore
from healthsync.storage.memory import InMemoryHealthStore

__all__ = ["HealthStore", "InMemoryHealthStore"]
