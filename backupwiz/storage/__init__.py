from .object_store import ObjectStore, LocalObjectStore, SpacesObjectStore, StoredObject, get_object_store, storage_path_for

__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "SpacesObjectStore",
    "StoredObject",
    "get_object_store",
    "storage_path_for",
]
