import asyncio
import logging
import os
import re
import tempfile

from langchain_community.document_loaders import PyPDFLoader

from knowledge_rag.core.exceptions import AppBaseError, PipelineError
from knowledge_rag.features.knowledge.events import ProgressSink, ensure_sink
from knowledge_rag.features.knowledge.pipeline import KnowledgePipeline

logger = logging.getLogger(__name__)


def extract_text_from_bytes(file_bytes: bytes, filename: str) -> str:
    """
    Extract text from PDF, DOCX, TXT or MD bytes.
    Use temp files since loaders require file paths.
    """
    ext = filename.rsplit(".", 1)[-1].lower()

    if ext in ("txt", "md"):
        return file_bytes.decode("utf-8", errors="replace")

    with tempfile.NamedTemporaryFile(delete=False, suffix=f".{ext}") as temp_file:
        temp_file.write(file_bytes)
        temp_path = temp_file.name

    try:
        if ext == "pdf":
            pages = PyPDFLoader(temp_path).load()
            return "\n\n".join(page.page_content for page in pages)
        elif ext == "docx":
            import docx
            doc = docx.Document(temp_path)
            return "\n".join(para.text for para in doc.paragraphs if para.text.strip())
        else:
            raise ValueError(f"Unsupported file extension: {ext}")
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


def clean_extracted_text(text: str) -> str:
    """Repair common PDF extraction artefacts without touching the wording.

    - joins words hyphenated across line breaks ("embed-\\nding" -> "embedding")
    - collapses runs of spaces/tabs, keeps paragraph breaks
    - removes spaces before punctuation
    """
    text = text.replace("\r\n", "\n").replace("\x00", "")
    text = re.sub(r"(?<=[A-Za-z])-\n\s*(?=[a-z])", "", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" +([.,!?;:])", r"\1", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


async def process_document_pipeline(
    pipeline: KnowledgePipeline,
    document_id: str,
    user_id: str,
    file_bytes: bytes,
    filename: str,
    progress: ProgressSink | None = None,
) -> bool:
    """
    Background task to process an uploaded document:
    1. Extract text from the file bytes.
    2. Run the ingestion pipeline (chunk → embed → index).
    The pipeline owns the document status; this task only logs the outcome.
    Returns True on success.
    """
    sink = ensure_sink(progress)
    logger.info(f"🚀 Starting background processing for document_id: {document_id} ({filename})")

    try:
        raw_text = await asyncio.to_thread(extract_text_from_bytes, file_bytes, filename)
    except Exception as e:
        logger.error(f"❌ Text extraction failed for {document_id}: {e}")
        try:
            await pipeline.fail_unclaimed(document_id, user_id, PipelineError("extract", e), sink)
        except AppBaseError as claim_error:
            logger.warning(f"⚠️ Not marking {document_id} failed: {claim_error.message}")
        return False

    try:
        report = await pipeline.ingest(clean_extracted_text(raw_text), document_id, user_id, sink)
    except AppBaseError as e:
        logger.error(f"❌ Document pipeline failed for {document_id}: {e.message} ({e.detail})")
        return False

    logger.info(f"🎉 Document pipeline finished for {document_id}: {report.chunk_count} chunks.")
    return True


async def delete_document_pipeline(
    pipeline: KnowledgePipeline,
    storage,
    document_id: str,
    storage_path: str | None,
    user_id: str,
) -> bool:
    """
    Background task to delete a document:
    1. Delete the file from Storage (if a storage path exists)
    2. Delete embeddings, resources and the document row
    """
    logger.info(f"🗑️ Starting background deletion for document_id: {document_id}")

    if storage_path and storage is not None:
        try:
            await asyncio.to_thread(storage.remove, [storage_path])
            logger.info(f"✅ Removed file from storage: {storage_path}")
        except Exception as e:
            # Continue to DB deletion even if the file is already gone
            logger.warning(f"⚠️ Could not remove file {storage_path} from storage: {e}")

    deleted = await pipeline.delete_document(document_id, user_id)
    if deleted:
        logger.info(f"✅ Deleted document {document_id}.")
    else:
        logger.warning(f"⚠️ Document {document_id} not found for user {user_id}.")
    return deleted
