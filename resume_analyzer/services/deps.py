"""
FastAPI dependencies. Routers only ask for these, so tests swap backends with
``app.dependency_overrides``.
"""
from functools import lru_cache

from fastapi import Depends

from resume_analyzer.models.settings import get_settings
from resume_analyzer.services.capabilities import OllamaProfileParser, OllamaTextFixer, TextAcquirer
from resume_analyzer.services.db import ARTIFACT_BUCKET, cvs_collection, get_database
from resume_analyzer.services.pipeline import AnalysisPipeline
from resume_analyzer.services.search import SearchEngine
from resume_analyzer.services.store import (
    ArtifactStore,
    GridFSArtifactStore,
    InMemoryArtifactStore,
    InMemoryRecordStore,
    MongoRecordStore,
    RecordStore,
)
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        logger.info("Using in-memory record store")
        return InMemoryRecordStore()
    return MongoRecordStore(cvs_collection(settings))


@lru_cache(maxsize=1)
def get_artifact_store() -> ArtifactStore:
    settings = get_settings()
    if settings.store_backend == "memory":
        return InMemoryArtifactStore()
    return GridFSArtifactStore(get_database(settings), bucket_name=ARTIFACT_BUCKET)


@lru_cache(maxsize=1)
def get_capabilities():
    settings = get_settings()
    return (
        TextAcquirer(settings.pipeline),
        OllamaTextFixer(settings.llm, stage_timeout=settings.pipeline.fixer_timeout),
        OllamaProfileParser(settings.llm, stage_timeout=settings.pipeline.parser_timeout),
    )


def get_pipeline(
    records: RecordStore = Depends(get_record_store),
    artifacts: ArtifactStore = Depends(get_artifact_store),
) -> AnalysisPipeline:
    settings = get_settings()
    acquirer, fixer, parser = get_capabilities()
    return AnalysisPipeline(
        records, artifacts, acquirer, fixer, parser,
        settings=settings.pipeline,
        taxonomy=settings.taxonomy,
    )


def get_search_engine(records: RecordStore = Depends(get_record_store)) -> SearchEngine:
    return SearchEngine(records, get_settings().search)
