"""Document, chunk and conversation persistence."""

from .base import AuthorizationError, Datastore, DatastoreError, DocumentNotFoundError, require_owner
from .records import SQLiteRecordStore
from .datastore import ChromaSQLiteDatastore

__all__ = [
    "AuthorizationError",
    "ChromaSQLiteDatastore",
    "Datastore",
    "DatastoreError",
    "DocumentNotFoundError",
    "SQLiteRecordStore",
    "require_owner",
]
