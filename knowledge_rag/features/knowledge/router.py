import asyncio
import json
import logging
import re
import unicodedata
import uuid
from typing import AsyncIterator

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from knowledge_rag.background.document_tasks import delete_document_pipeline, process_document_pipeline
from knowledge_rag.config import get_settings
from knowledge_rag.core.dependencies import get_current_user_id, get_pipeline, get_storage
from knowledge_rag.core.exceptions import PipelineError, app_error_to_http
from knowledge_rag.features.knowledge.events import (
    CollectingProgressSink,
    HydeGeneratedEvent,
    QueueProgressSink,
    ReactEvaluationEvent,
)
from knowledge_rag.features.knowledge.pipeline import KnowledgePipeline
from knowledge_rag.features.knowledge.schemas import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    DocumentResponse,
    DocumentStatus,
    KnowledgeGraph,
    SearchRequest,
    SearchResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Knowledge Base"])

ALLOWED_EXTENSIONS = {"pdf", "docx", "txt", "md"}

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
    "md": "text/markdown",
}


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def secure_filename(filename: str) -> str:
    """Strip accents and special characters, replace spaces with underscores."""
    filename = unicodedata.normalize('NFKD', filename).encode('ascii', 'ignore').decode('ascii')
    filename = re.sub(r'[^\w\.-]', '_', filename)
    return filename


@router.post("/documents")
async def upload_document(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
    storage=Depends(get_storage),
):
    """
    Upload a document (PDF, DOCX, TXT, MD) into the knowledge base.
    - Stores the file in Supabase Storage.
    - Creates a `pending` document record.
    - Schedules the background ingestion pipeline.
    """
    if not file.filename or not allowed_file(file.filename):
        raise HTTPException(status_code=400, detail="Only PDF, DOCX, TXT, and MD files are allowed.")

    settings = get_settings()
    safe_filename = secure_filename(file.filename)
    ext = safe_filename.rsplit(".", 1)[-1].lower()
    content_type = file.content_type or CONTENT_TYPES[ext]
    # Unique per upload: same-named files must not share a storage object
    storage_path = f"{user_id}/{uuid.uuid4().hex}_{safe_filename}"

    file_bytes = await file.read()
    if len(file_bytes) > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_MB}MB.",
        )

    try:
        storage.upload(
            file=file_bytes,
            path=storage_path,
            file_options={"content-type": content_type},
        )
        document = await pipeline.documents.create(
            owner_id=user_id,
            name=safe_filename,
            url=storage_path,
            mime_type=content_type,
        )
    except Exception as e:
        logger.error(f"Error uploading document: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Upload failed: {str(e)}")

    background_tasks.add_task(
        process_document_pipeline,
        pipeline,
        document_id=document.id,
        user_id=user_id,
        file_bytes=file_bytes,
        filename=safe_filename,
    )

    return {
        "status": "success",
        "message": "Upload successful. Document is being processed in the background.",
        "data": DocumentResponse.model_validate(document),
    }


@router.post("/documents/{document_id}/process")
async def process_document(
    document_id: str,
    stream: bool = True,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
    storage=Depends(get_storage),
):
    """
    (Re)process a stored document. With `stream=true` the response is NDJSON:
    one pipeline event per line, then a final `{"type": "done"}` line.
    """
    document = await pipeline.documents.get(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    if document.status == DocumentStatus.PROCESSING:
        raise HTTPException(status_code=409, detail="Document is already being processed")
    if not document.url:
        raise HTTPException(status_code=400, detail="Document has no stored file")

    try:
        file_bytes = await asyncio.to_thread(storage.download, document.url)
    except Exception as e:
        logger.error(f"Error downloading {document.url}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Download failed: {str(e)}")

    if not stream:
        ok = await process_document_pipeline(pipeline, document_id, user_id, file_bytes, document.name)
        current = await pipeline.documents.get(document_id, user_id)
        return {
            "status": "success" if ok else "failed",
            "data": DocumentResponse.model_validate(current) if current else None,
        }

    return StreamingResponse(
        stream_processing(pipeline, document_id, user_id, file_bytes, document.name),
        media_type="application/x-ndjson",
    )


async def stream_processing(
    pipeline: KnowledgePipeline,
    document_id: str,
    user_id: str,
    file_bytes: bytes,
    filename: str,
) -> AsyncIterator[str]:
    """Run the document pipeline and yield its events as NDJSON lines.

    If the client goes away mid-stream the run is cancelled (the document ends
    `failed`) and its outcome is still collected.
    """
    sink = QueueProgressSink()

    async def run() -> bool:
        try:
            return await process_document_pipeline(
                pipeline, document_id, user_id, file_bytes, filename, progress=sink
            )
        finally:
            sink.close()

    task = asyncio.create_task(run())
    try:
        async for event in sink.stream():
            yield event.model_dump_json() + "\n"
        ok = await task
        yield json.dumps({"type": "done", "success": ok}) + "\n"
    finally:
        if not task.done():
            logger.warning(f"⚠️ Client left the stream for {document_id}, cancelling the run")
            task.cancel()
        for outcome in await asyncio.gather(task, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error(f"❌ Streaming run for {document_id} failed: {outcome}")


@router.get("/documents")
async def list_documents(
    status: DocumentStatus | None = None,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
):
    """List the caller's documents, newest first, optionally filtered by status."""
    documents = await pipeline.documents.list_for_owner(user_id, status)
    return {
        "status": "success",
        "data": [DocumentResponse.model_validate(d) for d in documents],
    }


@router.get("/documents/{document_id}/chunks")
async def get_document_chunks(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
):
    """Raw resources extracted from a document."""
    document = await pipeline.documents.get(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    resources = await pipeline.documents.list_resources(document_id, user_id)
    return {
        "status": "success",
        "data": [r.model_dump() for r in resources],
    }


@router.delete("/documents/{document_id}")
async def delete_document(
    background_tasks: BackgroundTasks,
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
    storage=Depends(get_storage),
):
    """
    Delete a document from the knowledge base.
    - Removes the stored file.
    - Removes embeddings, resources and the document record.
    Runs as a background task to avoid blocking the API.
    """
    document = await pipeline.documents.get(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")

    background_tasks.add_task(
        delete_document_pipeline,
        pipeline,
        storage,
        document_id=document_id,
        storage_path=document.url,
        user_id=user_id,
    )
    return {"status": "success", "message": "Document deletion started in background."}


@router.post("/documents/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete_documents(
    request: BulkDeleteRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
    storage=Depends(get_storage),
):
    """
    Delete several documents at once. Each id is handled on its own: an id that
    is unknown, owned by someone else, or fails to delete ends up in `failed_ids`
    without stopping the others.
    """
    if not request.ids:
        raise HTTPException(status_code=400, detail="No document ids given")

    deleted_ids: list[str] = []
    failed_ids: list[str] = []
    for document_id in request.ids:
        try:
            document = await pipeline.documents.get(document_id, user_id)
            if document is None:
                failed_ids.append(document_id)
                continue
            if await delete_document_pipeline(pipeline, storage, document_id, document.url, user_id):
                deleted_ids.append(document_id)
            else:
                failed_ids.append(document_id)
        except Exception as e:
            logger.error(f"❌ Bulk delete failed for {document_id}: {str(e)}")
            failed_ids.append(document_id)

    logger.info(f"🗑️ Bulk delete for {user_id}: {len(deleted_ids)} deleted, {len(failed_ids)} failed")
    return BulkDeleteResponse(
        deleted_count=len(deleted_ids),
        failed_count=len(failed_ids),
        deleted_ids=deleted_ids,
        failed_ids=failed_ids,
    )


@router.get("/graph", response_model=KnowledgeGraph)
async def get_knowledge_graph(
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
):
    """Documents and their resources as a node/link graph for visualisation."""
    return await pipeline.knowledge_graph(user_id)


@router.post("/search", response_model=SearchResponse)
async def search_knowledge_base(
    request: SearchRequest,
    user_id: str = Depends(get_current_user_id),
    pipeline: KnowledgePipeline = Depends(get_pipeline),
):
    """
    Answer a question from the caller's knowledge base (HyDE + recall + ReAct filter).
    The trace carries the hypothetical passage and every relevance verdict.
    """
    sink = CollectingProgressSink()
    try:
        results = await pipeline.retrieve(request.query, user_id, progress=sink)
    except PipelineError as e:
        raise app_error_to_http(e, status_code=502)

    trace = []
    if request.include_trace:
        trace = [
            e.model_dump()
            for e in sink.events
            if isinstance(e, (HydeGeneratedEvent, ReactEvaluationEvent))
        ]
    return SearchResponse(results=results, trace=trace)
