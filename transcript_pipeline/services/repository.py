"""Request repository: persistence of RequestRecords with merge-write updates."""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from transcript_pipeline.errors import (
    CreateError,
    FindError,
    NotFoundError,
    TimestampsKeyExists,
    UpdateError,
    ZeroIdError,
)
from transcript_pipeline.models.request_document import RequestDocument
from transcript_pipeline.schemas.request import RequestRecord
from transcript_pipeline.timestamps import utc_now

logger = logging.getLogger(__name__)


def merge_documents(stored: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Overlay the fields present in `update` onto `stored`.

    `timestamps` merges key by key; a key already stored with a different
    value raises TimestampsKeyExists. Every other present field, including
    `matched_tags`, replaces its stored counterpart.
    """
    merged = copy.deepcopy(stored)
    for field, value in update.items():
        if field == "timestamps":
            timestamps = dict(merged.get("timestamps") or {})
            for key, ts in value.items():
                if key in timestamps and timestamps[key] != ts:
                    raise TimestampsKeyExists(key)
                timestamps[key] = ts
            merged["timestamps"] = timestamps
        else:
            merged[field] = copy.deepcopy(value)
    return merged


def _require_id(request_id: uuid.UUID) -> str:
    if request_id.int == 0:
        raise ZeroIdError()
    return str(request_id)


class RequestRepository(ABC):
    """Store of RequestRecords keyed by request_id."""

    @abstractmethod
    def create(self, record: RequestRecord) -> None:
        """Persist the full record, overwriting any existing document with the same id."""

    @abstractmethod
    def find_by_id(self, request_id: uuid.UUID) -> RequestRecord:
        """Load a record. Raises NotFoundError when no document exists."""

    @abstractmethod
    def update(self, record: RequestRecord) -> RequestRecord:
        """Merge the non-empty fields of `record` into the stored document and return the result."""


class SQLRequestRepository(RequestRepository):
    """Documents in the `request_documents` table, one row per (collection, request_id)."""

    def __init__(self, session_factory: Callable[[], Session], collection: str = "requests") -> None:
        self._session_factory = session_factory
        self.collection = collection

    def create(self, record: RequestRecord) -> None:
        document_id = _require_id(record.request_id)
        now = datetime.utcnow()
        try:
            with self._session_factory() as db:
                doc = db.get(RequestDocument, (self.collection, document_id))
                if doc is None:
                    db.add(
                        RequestDocument(
                            collection=self.collection,
                            document_id=document_id,
                            data=record.to_document(),
                            created_at=now,
                            updated_at=now,
                        )
                    )
                else:
                    doc.data = record.to_document()
                    doc.created_at = now
                db.commit()
        except SQLAlchemyError as e:
            raise CreateError(f"create {document_id}: {e}", cause=e) from e
        logger.debug("Created %s/%s", self.collection, document_id)

    def find_by_id(self, request_id: uuid.UUID) -> RequestRecord:
        document_id = _require_id(request_id)
        try:
            with self._session_factory() as db:
                doc = db.get(RequestDocument, (self.collection, document_id))
                data = copy.deepcopy(doc.data) if doc is not None else None
        except SQLAlchemyError as e:
            raise FindError(f"find {document_id}: {e}", cause=e) from e

        if data is None:
            raise NotFoundError(f"request {document_id} not found")
        return RequestRecord.from_document(request_id, data)

    def update(self, record: RequestRecord) -> RequestRecord:
        document_id = _require_id(record.request_id)
        record.updated_at = utc_now()
        try:
            with self._session_factory() as db:
                doc = db.execute(
                    select(RequestDocument)
                    .where(
                        RequestDocument.collection == self.collection,
                        RequestDocument.document_id == document_id,
                    )
                    .with_for_update()
                ).scalar_one_or_none()

                if doc is None:
                    merged = merge_documents({}, record.to_document())
                    db.add(RequestDocument(collection=self.collection, document_id=document_id, data=merged))
                else:
                    merged = merge_documents(doc.data or {}, record.to_document())
                    doc.data = merged
                    doc.updated_at = datetime.utcnow()
                db.commit()
        except SQLAlchemyError as e:
            raise UpdateError(f"update {document_id}: {e}", cause=e) from e
        return RequestRecord.from_document(record.request_id, merged)


class MemoryRequestRepository(RequestRepository):
    """In-process store for local runs and tests. Safe to share between threads."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._created_at: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def create(self, record: RequestRecord) -> None:
        document_id = _require_id(record.request_id)
        with self._lock:
            self._documents[document_id] = record.to_document()
            self._created_at[document_id] = datetime.utcnow()

    def find_by_id(self, request_id: uuid.UUID) -> RequestRecord:
        document_id = _require_id(request_id)
        with self._lock:
            data = copy.deepcopy(self._documents.get(document_id))
        if data is None:
            raise NotFoundError(f"request {document_id} not found")
        return RequestRecord.from_document(request_id, data)

    def update(self, record: RequestRecord) -> RequestRecord:
        document_id = _require_id(record.request_id)
        record.updated_at = utc_now()
        with self._lock:
            merged = merge_documents(self._documents.get(document_id, {}), record.to_document())
            self._documents[document_id] = merged
            self._created_at.setdefault(document_id, datetime.utcnow())
        return RequestRecord.from_document(record.request_id, merged)

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)
