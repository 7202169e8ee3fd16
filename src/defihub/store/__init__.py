"""Store package exports."""

from defihub.store.base import Store
from defihub.store.memory import MemoryStore
from defihub.store.seed import REFERENCE_PRICES, build_store, seed_store

__all__ = [
    "REFERENCE_PRICES",
    "MemoryStore",
    "Store",
    "build_store",
    "seed_store",
]
