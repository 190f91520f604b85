"""
Knowledge feature: Document / Resource persistence.

Documents carry the processing status; Resources hold the raw text of one
ingestion run. Status writes go through `claim` (atomic move to
`processing`) and `set_status`, so only one pipeline can own a document at a
time.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from supabase import Client

from knowledge_rag.features.knowledge.schemas import TERMINAL_STATUSES, Document, DocumentStatus, Resource

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    async def create(self, owner_id: str, name: str, url: str | None, mime_type: str) -> Document: ...

    async def get(self, document_id: str, owner_id: str | None = None) -> Document | None: ...

    async def list_for_owner(self, owner_id: str, status: DocumentStatus | None = None) -> list[Document]: ...

    async def set_status(self, document_id: str, status: DocumentStatus) -> None: ...

    async def claim(self, document_id: str) -> bool: ...

    async def create_resource(self, document_id: str, owner_id: str, content: str) -> Resource: ...

    async def list_resources(self, document_id: str, owner_id: str | None = None) -> list[Resource]: ...

    async def list_resources_for_owner(self, owner_id: str) -> list[Resource]: ...

    async def delete_resource(self, resource_id: str) -> None: ...

    async def delete(self, document_id: str, owner_id: str) -> bool: ...


def _check_terminal(status: DocumentStatus) -> None:
    # `processing` is only ever entered through claim()
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"set_status only writes terminal statuses, got {status.value!r}")


class InMemoryDocumentStore:
    """Dict-backed store for local runs and tests."""

    def __init__(self):
        self.documents: dict[str, Document] = {}
        self.resources: dict[str, Resource] = {}
        self.status_history: dict[str, list[DocumentStatus]] = {}
        self._lock = asyncio.Lock()

    async def create(self, owner_id: str, name: str, url: str | None, mime_type: str) -> Document:
        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            url=url,
            mime_type=mime_type,
            status=DocumentStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        self.documents[document.id] = document
        self.status_history[document.id] = [DocumentStatus.PENDING]
        return document

    async def get(self, document_id: str, owner_id: str | None = None) -> Document | None:
        document = self.documents.get(document_id)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            return None
        return document

    async def list_for_owner(self, owner_id: str, status: DocumentStatus | None = None) -> list[Document]:
        docs = [
            d for d in self.documents.values()
            if d.owner_id == owner_id and (status is None or d.status == status)
        ]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    async def set_status(self, document_id: str, status: DocumentStatus) -> None:
        _check_terminal(status)
        async with self._lock:
            document = self.documents[document_id]
            self.documents[document_id] = document.model_copy(update={"status": status})
            self.status_history[document_id].append(status)

    async def claim(self, document_id: str) -> bool:
        async with self._lock:
            document = self.documents.get(document_id)
            if document is None or document.status == DocumentStatus.PROCESSING:
                return False
            self.documents[document_id] = document.model_copy(update={"status": DocumentStatus.PROCESSING})
            self.status_history[document_id].append(DocumentStatus.PROCESSING)
            return True

    async def create_resource(self, document_id: str, owner_id: str, content: str) -> Resource:
        resource = Resource(id=str(uuid.uuid4()), document_id=document_id, owner_id=owner_id, content=content)
        self.resources[resource.id] = resource
        return resource

    async def list_resources(self, document_id: str, owner_id: str | None = None) -> list[Resource]:
        return [
            r for r in self.resources.values()
            if r.document_id == document_id and (owner_id is None or r.owner_id == owner_id)
        ]

    async def list_resources_for_owner(self, owner_id: str) -> list[Resource]:
        return [r for r in self.resources.values() if r.owner_id == owner_id]

    async def delete_resource(self, resource_id: str) -> None:
        self.resources.pop(resource_id, None)

    async def delete(self, document_id: str, owner_id: str) -> bool:
        async with self._lock:
            document = self.documents.get(document_id)
            if document is None or document.owner_id != owner_id:
                return False
            self.resources = {k: r for k, r in self.resources.items() if r.document_id != document_id}
            del self.documents[document_id]
            return True


def _row_to_document(row: dict) -> Document:
    return Document(
        id=row["id"],
        owner_id=row["user_id"],
        name=row.get("name") or "No Name Given",
        url=row.get("url"),
        mime_type=row.get("mime_type") or "application/pdf",
        status=row.get("status") or DocumentStatus.PENDING,
        created_at=row.get("created_at"),
    )


def _row_to_resource(row: dict) -> Resource:
    return Resource(
        id=row["id"],
        document_id=row["document_id"],
        owner_id=row["user_id"],
        content=row["content"],
    )


class SupabaseDocumentStore:
    """Documents and resources in Supabase tables (sync client, run in threads)."""

    def __init__(self, db: Client, documents_table: str = "documents", resources_table: str = "resources"):
        self.db = db
        self.documents_table = documents_table
        self.resources_table = resources_table

    async def create(self, owner_id: str, name: str, url: str | None, mime_type: str) -> Document:
        insert_data = {
            "user_id": owner_id,
            "name": name,
            "url": url,
            "mime_type": mime_type,
            "status": DocumentStatus.PENDING.value,
        }
        res = await asyncio.to_thread(
            lambda: self.db.table(self.documents_table).insert(insert_data).execute()
        )
        return _row_to_document(res.data[0])

    async def get(self, document_id: str, owner_id: str | None = None) -> Document | None:
        def _query():
            query = self.db.table(self.documents_table).select("*").eq("id", document_id)
            if owner_id is not None:
                query = query.eq("user_id", owner_id)
            return query.execute()

        res = await asyncio.to_thread(_query)
        return _row_to_document(res.data[0]) if res.data else None

    async def list_for_owner(self, owner_id: str, status: DocumentStatus | None = None) -> list[Document]:
        def _query():
            query = self.db.table(self.documents_table).select("*").eq("user_id", owner_id)
            if status is not None:
                query = query.eq("status", status.value)
            return query.order("created_at", desc=True).execute()

        res = await asyncio.to_thread(_query)
        return [_row_to_document(row) for row in (res.data or [])]

    async def set_status(self, document_id: str, status: DocumentStatus) -> None:
        _check_terminal(status)
        await asyncio.to_thread(
            lambda: self.db.table(self.documents_table)
            .update({"status": status.value})
            .eq("id", document_id)
            .execute()
        )

    async def claim(self, document_id: str) -> bool:
        # Conditional update: only one caller can flip a non-processing row
        res = await asyncio.to_thread(
            lambda: self.db.table(self.documents_table)
            .update({"status": DocumentStatus.PROCESSING.value})
            .eq("id", document_id)
            .neq("status", DocumentStatus.PROCESSING.value)
            .execute()
        )
        return bool(res.data)

    async def create_resource(self, document_id: str, owner_id: str, content: str) -> Resource:
        insert_data = {"document_id": document_id, "user_id": owner_id, "content": content}
        res = await asyncio.to_thread(
            lambda: self.db.table(self.resources_table).insert(insert_data).execute()
        )
        return _row_to_resource(res.data[0])

    async def list_resources(self, document_id: str, owner_id: str | None = None) -> list[Resource]:
        def _query():
            query = self.db.table(self.resources_table).select("*").eq("document_id", document_id)
            if owner_id is not None:
                query = query.eq("user_id", owner_id)
            return query.execute()

        res = await asyncio.to_thread(_query)
        return [_row_to_resource(row) for row in (res.data or [])]

    async def list_resources_for_owner(self, owner_id: str) -> list[Resource]:
        res = await asyncio.to_thread(
            lambda: self.db.table(self.resources_table).select("*").eq("user_id", owner_id).execute()
        )
        return [_row_to_resource(row) for row in (res.data or [])]

    async def delete_resource(self, resource_id: str) -> None:
        # ON DELETE CASCADE drops the resource's embeddings; late inserts then fail the FK
        await asyncio.to_thread(
            lambda: self.db.table(self.resources_table).delete().eq("id", resource_id).execute()
        )

    async def delete(self, document_id: str, owner_id: str) -> bool:
        # ON DELETE CASCADE removes resources (and their embeddings)
        res = await asyncio.to_thread(
            lambda: self.db.table(self.documents_table)
            .delete()
            .eq("id", document_id)
            .eq("user_id", owner_id)
            .execute()
        )
        return bool(res.data)
