"""
Storage modules for data persistence.
"""

from src.storage.mapping_store import DEFAULT_STORE_PATH, MappingStore

__all__ = [
    "DEFAULT_STORE_PATH",
    "MappingStore",
]
