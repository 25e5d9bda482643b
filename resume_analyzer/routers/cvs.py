import base64
import binascii
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from resume_analyzer.models.schemas import (
    AnalysisOutcome,
    BatchAnalyzePayload,
    BatchAnalyzeResponse,
    DocumentRecord,
    UploadPayload,
    UrlPayload,
)
from resume_analyzer.models.search import SearchPage, SearchQuery
from resume_analyzer.services.deps import get_artifact_store, get_pipeline, get_record_store, get_search_engine
from resume_analyzer.services.pipeline import AnalysisPipeline
from resume_analyzer.services.search import SearchEngine, format_record
from resume_analyzer.services.store import ArtifactStore, RecordStore
from resume_analyzer.utils.exceptions import DocumentNotFoundError, ValidationError
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter()


def decode_base64_content(b64_string: str) -> bytes:
    try:
        return base64.b64decode(b64_string, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 content: {e}", field="base64Content")


async def _register(records: RecordStore, document_id: Optional[str], **fields) -> dict:
    document_id = document_id or str(uuid.uuid4())
    existing = await records.get(document_id)
    # fileId is fixed for the life of a document
    file_id = existing["fileId"] if existing else str(uuid.uuid4())
    record = DocumentRecord(id=document_id, file_id=file_id, **fields)
    await records.put(record.to_document())
    logger.info(f"Registered document {document_id} ({record.filename})")
    return record.to_document()


@router.post("", status_code=201)
async def upload_cv(
    payload: UploadPayload,
    records: RecordStore = Depends(get_record_store),
    artifacts: ArtifactStore = Depends(get_artifact_store),
):
    """Register an uploaded resume (base64 encoded) for analysis"""
    content = decode_base64_content(payload.base64_content)
    if not content:
        raise ValidationError("Uploaded file is empty", field="base64Content")

    doc = await _register(records, payload.id, filename=payload.filename, content_type=payload.content_type)
    await artifacts.put(doc["fileId"], content)
    return format_record(doc)


@router.post("/from-url", status_code=201)
async def register_from_url(payload: UrlPayload, records: RecordStore = Depends(get_record_store)):
    """Register a remote resume; it is downloaded when analysed"""
    filename = payload.filename or payload.url.rstrip("/").rsplit("/", 1)[-1] or "document"
    doc = await _register(records, payload.id, filename=filename, source_url=payload.url)
    return format_record(doc)


@router.get("", response_model=SearchPage)
async def list_cvs(
    analyzed: Optional[bool] = Query(None, description="Only analysed (true) or unanalysed (false) documents"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    engine: SearchEngine = Depends(get_search_engine),
):
    """List documents, newest first"""
    return await engine.search(SearchQuery(analyzed=analyzed, page=page, limit=limit))


@router.get("/search", response_model=SearchPage)
async def search_cvs(
    query: Optional[str] = Query(None),
    tags: List[str] = Query(default=[]),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    engine: SearchEngine = Depends(get_search_engine),
):
    return await engine.search(SearchQuery(search_term=query, tags=tags, page=page, limit=limit))


@router.post("/advanced-search", response_model=SearchPage)
async def advanced_search(query: SearchQuery, engine: SearchEngine = Depends(get_search_engine)):
    return await engine.search(query)


@router.post("/analyze", response_model=BatchAnalyzeResponse)
async def analyze_batch(payload: BatchAnalyzePayload, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Analyse several documents; each one succeeds or fails on its own"""
    results = await pipeline.analyze_many(payload.ids)
    succeeded = sum(1 for r in results.values() if r.success)
    return BatchAnalyzeResponse(results=results, succeeded=succeeded, failed=len(results) - succeeded)


@router.get("/{document_id}")
async def get_cv(document_id: str, records: RecordStore = Depends(get_record_store)):
    doc = await records.get(document_id)
    if doc is None:
        raise DocumentNotFoundError(document_id)
    return format_record(doc)


@router.get("/{document_id}/text")
async def get_cv_text(
    document_id: str,
    variant: str = Query("original", pattern="^(original|fixed)$"),
    records: RecordStore = Depends(get_record_store),
    artifacts: ArtifactStore = Depends(get_artifact_store),
):
    """Stored text of a document: the extracted original or the fixed version"""
    doc = await records.get(document_id)
    if doc is None:
        raise DocumentNotFoundError(document_id)

    key = doc.get("originalTextKey" if variant == "original" else "fixedTextKey")
    data = await artifacts.get(key) if key else None
    if data is None:
        raise HTTPException(status_code=404, detail=f"No {variant} text stored for document {document_id}")
    return {"id": document_id, "variant": variant, "text": data.decode("utf-8")}


@router.post("/{document_id}/analyze", response_model=AnalysisOutcome)
async def analyze_cv(document_id: str, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    started = datetime.utcnow()
    outcome = await pipeline.analyze(document_id)
    logger.info(f"Analysis of {document_id} finished in {(datetime.utcnow() - started).total_seconds():.1f}s")
    return outcome
