"""Object store capability used by the controller."""

from cluster_cleaner.store.base import BACKGROUND, NotFoundError, ObjectStore, StoreError

__all__ = ["BACKGROUND", "NotFoundError", "ObjectStore", "StoreError"]
