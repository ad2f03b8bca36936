"""Database module for JSON document persistence.

Provides:
- DocumentStore with one directory per collection
- Query helpers and write batches
"""

from escuela.db.document_store import (
    ArrayRemove,
    ArrayUnion,
    Collection,
    DocumentNotFoundError,
    DocumentStore,
    WriteBatch,
)

__all__ = [
    "ArrayRemove",
    "ArrayUnion",
    "Collection",
    "DocumentNotFoundError",
    "DocumentStore",
    "WriteBatch",
]
