"""JSON document store.

Collection-per-entity persistence: each collection is a directory under the
store root and each document is one JSON file named after its id.

Provides:
- Document CRUD with merge writes and array union/remove sentinels
- Equality, array-contains and membership queries with ordering
- Write batches applied under a single store lock

Example:
    store = DocumentStore(Path("data/db"))
    cursos = store.collection("cursos")
    course_id = cursos.add({"titulo": "Vida Cristiana", "activo": True})
    activos = cursos.where("activo", "==", True).order_by("titulo").stream()
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Literal

import structlog

from escuela.errors import NotFoundError, ValidationError
from escuela.utils.dates import to_iso

logger = structlog.get_logger(__name__)

Operator = Literal["==", "array_contains", "in"]

_VALID_ID = re.compile(r"^[A-Za-z0-9_\-.@]+$")


# =============================================================================
# SENTINELS & ERRORS
# =============================================================================


class ArrayUnion:
    """Append values to an array field, skipping ones already present."""

    def __init__(self, *values: Any):
        self.values = list(values)


class ArrayRemove:
    """Remove every occurrence of the values from an array field."""

    def __init__(self, *values: Any):
        self.values = list(values)


class DocumentNotFoundError(NotFoundError):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        super().__init__(f"Documento '{collection}'", doc_id)


class InvalidDocumentIdError(ValidationError):
    """Raised for ids that cannot be used as file names."""

    pass


# =============================================================================
# ENCODING
# =============================================================================


def encode_value(value: Any) -> Any:
    """Convert a Python value into its JSON-storable form."""
    if isinstance(value, (datetime, date)):
        return to_iso(value)
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode_value(v) for v in value]
    return value


def _apply_updates(current: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Merge updates into a document, resolving array sentinels."""
    result = dict(current)
    for key, value in updates.items():
        if isinstance(value, ArrayUnion):
            existing = list(result.get(key) or [])
            for item in encode_value(value.values):
                if item not in existing:
                    existing.append(item)
            result[key] = existing
        elif isinstance(value, ArrayRemove):
            removed = encode_value(value.values)
            result[key] = [item for item in (result.get(key) or []) if item not in removed]
        else:
            result[key] = encode_value(value)
    return result


def _sort_key(value: Any) -> tuple[int, Any]:
    # Mixed types order as numbers, then strings, then anything else
    if isinstance(value, (bool, int, float)):
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    return (2, json.dumps(value, sort_keys=True, default=str))


# =============================================================================
# QUERIES
# =============================================================================


@dataclass(frozen=True)
class _Filter:
    field: str
    op: Operator
    value: Any

    def matches(self, doc: dict[str, Any]) -> bool:
        current = doc.get(self.field)
        if self.op == "==":
            return current == self.value
        if self.op == "array_contains":
            return isinstance(current, list) and self.value in current
        if self.op == "in":
            return current in self.value
        raise ValidationError(f"Operador de consulta no soportado: {self.op}")


@dataclass(frozen=True)
class Query:
    """Immutable query over one collection."""

    collection: "Collection"
    filters: tuple[_Filter, ...] = ()
    ordering: tuple[tuple[str, bool], ...] = ()
    max_results: int | None = None

    def where(self, field_name: str, op: Operator, value: Any) -> "Query":
        """Add a filter. Filters are combined with AND."""
        if op not in ("==", "array_contains", "in"):
            raise ValidationError(f"Operador de consulta no soportado: {op}")
        encoded = encode_value(list(value) if op == "in" else value)
        return Query(
            collection=self.collection,
            filters=self.filters + (_Filter(field_name, op, encoded),),
            ordering=self.ordering,
            max_results=self.max_results,
        )

    def order_by(self, field_name: str, descending: bool = False) -> "Query":
        """Order results; later calls break ties of earlier ones."""
        return Query(
            collection=self.collection,
            filters=self.filters,
            ordering=self.ordering + ((field_name, descending),),
            max_results=self.max_results,
        )

    def limit(self, count: int) -> "Query":
        return Query(
            collection=self.collection,
            filters=self.filters,
            ordering=self.ordering,
            max_results=count,
        )

    def stream(self) -> list[dict[str, Any]]:
        """Run the query and return matching documents."""
        docs = [
            doc
            for doc in self.collection._load_all()
            if all(f.matches(doc) for f in self.filters)
        ]
        # Stable sorts applied from the least significant key
        for field_name, descending in reversed(self.ordering):
            present = [d for d in docs if d.get(field_name) is not None]
            missing = [d for d in docs if d.get(field_name) is None]
            present.sort(key=lambda d: _sort_key(d.get(field_name)), reverse=descending)
            docs = present + missing
        if self.max_results is not None:
            docs = docs[: self.max_results]
        return docs

    def first(self) -> dict[str, Any] | None:
        """Return the first matching document or None."""
        results = self.limit(1).stream()
        return results[0] if results else None


# =============================================================================
# COLLECTION
# =============================================================================


class Collection:
    """A named set of JSON documents."""

    def __init__(self, store: "DocumentStore", name: str):
        self.store = store
        self.name = name
        self.path = store.root / name

    def _query(self) -> Query:
        return Query(collection=self)

    def where(self, field_name: str, op: Operator, value: Any) -> Query:
        return self._query().where(field_name, op, value)

    def order_by(self, field_name: str, descending: bool = False) -> Query:
        return self._query().order_by(field_name, descending)

    def all(self) -> list[dict[str, Any]]:
        return self._query().stream()

    def new_id(self) -> str:
        """Generate a fresh document id."""
        return uuid.uuid4().hex[:20]

    def _doc_path(self, doc_id: str) -> Path:
        if not doc_id or not _VALID_ID.match(doc_id) or doc_id in (".", ".."):
            raise InvalidDocumentIdError(f"Id de documento inválido: {doc_id!r}")
        return self.path / f"{doc_id}.json"

    def _read(self, path: Path) -> dict[str, Any]:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        data["id"] = path.stem
        return data

    def _load_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        return [self._read(p) for p in sorted(self.path.glob("*.json"))]

    def _write(self, doc_id: str, data: dict[str, Any]) -> None:
        path = self._doc_path(doc_id)
        self.path.mkdir(parents=True, exist_ok=True)
        payload = dict(data)
        payload["id"] = doc_id
        fd, tmp_name = tempfile.mkstemp(dir=self.path, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, doc_id: str) -> dict[str, Any] | None:
        """Read a document, or None when it does not exist."""
        path = self._doc_path(doc_id)
        if not path.exists():
            return None
        return self._read(path)

    def exists(self, doc_id: str) -> bool:
        return self._doc_path(doc_id).exists()

    def set(self, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        """Create or replace a document.

        With merge=True the fields are merged into the existing document
        instead of replacing it.
        """
        with self.store._lock:
            current = (self.get(doc_id) or {}) if merge else {}
            self._write(doc_id, _apply_updates(current, data))
        logger.debug("document_set", collection=self.name, doc_id=doc_id, merge=merge)

    def add(self, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        doc_id = self.new_id()
        self.set(doc_id, data)
        return doc_id

    def update(self, doc_id: str, data: dict[str, Any]) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        with self.store._lock:
            current = self.get(doc_id)
            if current is None:
                raise DocumentNotFoundError(self.name, doc_id)
            self._write(doc_id, _apply_updates(current, data))
        logger.debug("document_updated", collection=self.name, doc_id=doc_id)

    def delete(self, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        path = self._doc_path(doc_id)
        with self.store._lock:
            if path.exists():
                path.unlink()
        logger.debug("document_deleted", collection=self.name, doc_id=doc_id)


# =============================================================================
# BATCH
# =============================================================================


@dataclass
class _BatchOp:
    kind: Literal["set", "update", "delete"]
    collection: str
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Group of writes applied together by commit()."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: list[_BatchOp] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._ops.append(_BatchOp("set", collection, doc_id, data, merge))
        return self

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> "WriteBatch":
        self._ops.append(_BatchOp("update", collection, doc_id, data))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._ops.append(_BatchOp("delete", collection, doc_id))
        return self

    def commit(self) -> None:
        """Apply every queued write.

        Updates of missing documents are detected before anything is written,
        so a failing batch leaves the store untouched.

        Raises:
            DocumentNotFoundError: If an update targets a missing document.
        """
        if self._committed:
            raise ValidationError("El lote de escritura ya fue confirmado")

        with self._store._lock:
            for op in self._ops:
                if op.kind == "update" and not self._store.collection(op.collection).exists(op.doc_id):
                    raise DocumentNotFoundError(op.collection, op.doc_id)

            for op in self._ops:
                coll = self._store.collection(op.collection)
                if op.kind == "set":
                    coll.set(op.doc_id, op.data, merge=op.merge)
                elif op.kind == "update":
                    coll.update(op.doc_id, op.data)
                else:
                    coll.delete(op.doc_id)

        self._committed = True
        logger.info("batch_committed", writes=len(self._ops))


# =============================================================================
# STORE
# =============================================================================


class DocumentStore:
    """Root of all collections."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def collection(self, name: str) -> Collection:
        return Collection(self, name)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def collections(self) -> list[str]:
        """Names of collections that hold at least one document."""
        return sorted(
            d.name for d in self.root.iterdir() if d.is_dir() and any(d.glob("*.json"))
        )

    def get_all(self, collection: str, doc_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Fetch several documents by id, skipping missing ones."""
        coll = self.collection(collection)
        result: dict[str, dict[str, Any]] = {}
        for doc_id in doc_ids:
            if doc_id in result or not doc_id:
                continue
            doc = coll.get(doc_id)
            if doc is not None:
                result[doc_id] = doc
        return result
