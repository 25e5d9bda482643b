"""
Document analysis pipeline.

One run takes a registered document through acquisition, normalization,
extraction and tag derivation, writing each stage's output as the stage's last
act. Stage failures end in the ``error`` state for that document only; a
normalization failure is not fatal and extraction continues on the raw text.
"""
import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, TypedDict

from langgraph.graph import END, StateGraph

from resume_analyzer.models.analysis import CandidateAnalysisResult
from resume_analyzer.models.schemas import AnalysisOutcome, DocumentStatus, SourceRef
from resume_analyzer.models.settings import PipelineSettings, TaxonomySettings
from resume_analyzer.services.taxonomy import build_analysis, demographic_fields, derive_tags
from resume_analyzer.utils.exceptions import (
    AcquisitionError,
    DatabaseError,
    DocumentNotFoundError,
    StageError,
)
from resume_analyzer.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)


def original_key(document_id: str) -> str:
    return f"{document_id}_original"


def fixed_key(document_id: str) -> str:
    return f"{document_id}_fixed"


class AnalysisState(TypedDict, total=False):
    document_id: str
    record: dict
    raw_text: str
    text: str
    profile: CandidateAnalysisResult
    tags: List[str]
    failure: str
    warning: str


class AnalysisPipeline:
    def __init__(
        self,
        records,
        artifacts,
        acquirer,
        fixer,
        parser,
        settings: PipelineSettings = None,
        taxonomy: TaxonomySettings = None,
    ):
        self.records = records
        self.artifacts = artifacts
        self.acquirer = acquirer
        self.fixer = fixer
        self.parser = parser
        self.settings = settings or PipelineSettings()
        self.taxonomy = taxonomy or TaxonomySettings()
        self.graph = self.build_graph()

    # LangGraph nodes
    async def node_acquire(self, state: AnalysisState):
        document_id = state["document_id"]
        try:
            source = await self._source_for(state["record"])
        except AcquisitionError as e:
            return {"failure": f"acquisition failed: {e.message}"}
        text, failure = await self._call_stage(
            "acquisition", self.acquirer.extract_text(source), self.settings.acquisition_timeout, document_id
        )
        if failure:
            return {"failure": failure}
        return {"raw_text": text}

    async def node_store_original(self, state: AnalysisState):
        document_id = state["document_id"]
        key = original_key(document_id)
        await self.artifacts.put(key, state["raw_text"].encode("utf-8"))
        await self.records.update(document_id, {"originalTextKey": key})
        return {"text": state["raw_text"]}

    async def node_normalize(self, state: AnalysisState):
        fixed, failure = await self._call_stage(
            "normalization", self.fixer.normalize_text(state["raw_text"]), self.settings.fixer_timeout,
            state["document_id"]
        )
        if failure:
            logger.warning(f"Continuing with unnormalized text: {failure}", extra={"document_id": state["document_id"]})
            return {"warning": failure}
        return {"text": fixed}

    async def node_store_fixed(self, state: AnalysisState):
        document_id = state["document_id"]
        key = fixed_key(document_id)
        await self.artifacts.put(key, state["text"].encode("utf-8"))
        await self.records.update(document_id, {"fixedTextKey": key})
        return {"text": state["text"]}

    async def node_extract(self, state: AnalysisState):
        profile, failure = await self._call_stage(
            "extraction", self.parser.extract_profile(state["text"]), self.settings.parser_timeout,
            state["document_id"]
        )
        if failure:
            return {"failure": failure}
        return {"profile": profile}

    async def node_derive(self, state: AnalysisState):
        return {"tags": derive_tags(state["profile"], self.taxonomy)}

    async def node_commit(self, state: AnalysisState):
        document_id = state["document_id"]
        profile = state["profile"]
        now = datetime.utcnow()
        fields = {
            "parsedData": profile.model_dump(by_alias=True, mode="json"),
            "analysis": build_analysis(profile),
            "tags": state["tags"],
            **demographic_fields(profile, state.get("text")),
            "analyzedAt": now,
            "updatedAt": now,
        }
        if state.get("warning"):
            # searchable, but flagged so the failed fixer is visible
            fields.update(status=DocumentStatus.ERROR.value, analyzed=False, error=state["warning"])
            await self.records.update(document_id, fields, ["fixedTextKey"])
        else:
            fields.update(status=DocumentStatus.COMPLETED.value, analyzed=True)
            await self.records.update(document_id, fields, ["error"])
        return {"tags": state["tags"]}

    async def node_fail(self, state: AnalysisState):
        logger.error(f"Analysis failed: {state['failure']}", extra={"document_id": state["document_id"]})
        await self._mark_failed(state["document_id"], state["failure"])
        return {"failure": state["failure"]}

    def build_graph(self):
        g = StateGraph(AnalysisState)
        g.add_node("acquire", self.node_acquire)
        g.add_node("store_original", self.node_store_original)
        g.add_node("normalize", self.node_normalize)
        g.add_node("store_fixed", self.node_store_fixed)
        g.add_node("extract", self.node_extract)
        g.add_node("derive", self.node_derive)
        g.add_node("commit", self.node_commit)
        g.add_node("fail", self.node_fail)
        g.set_entry_point("acquire")
        g.add_conditional_edges("acquire", _route_failure, {"ok": "store_original", "fail": "fail"})
        g.add_edge("store_original", "normalize")
        g.add_conditional_edges(
            "normalize",
            lambda s: "skipped" if s.get("warning") else "fixed",
            {"fixed": "store_fixed", "skipped": "extract"}
        )
        g.add_edge("store_fixed", "extract")
        g.add_conditional_edges("extract", _route_failure, {"ok": "derive", "fail": "fail"})
        g.add_edge("derive", "commit")
        g.add_edge("commit", END)
        g.add_edge("fail", END)
        return g.compile()

    async def analyze(self, document_id: str) -> AnalysisOutcome:
        record = await self.records.get(document_id)
        if record is None:
            raise DocumentNotFoundError(document_id)

        await self.records.update(
            document_id,
            {"status": DocumentStatus.PROCESSING.value, "updatedAt": datetime.utcnow()},
            ["error"]
        )
        logger.info(f"Analysis started for {document_id}", extra={"document_id": document_id})

        try:
            final = await self.graph.ainvoke({"document_id": document_id, "record": record})
        except DatabaseError as e:
            logger.error(f"Store write failed while analysing {document_id}: {e.message}", extra={"document_id": document_id})
            return await self._fail_run(document_id, f"store error: {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected error analysing {document_id}", extra={"document_id": document_id})
            return await self._fail_run(document_id, f"unexpected error: {e}")

        return self._outcome(document_id, final)

    async def _fail_run(self, document_id: str, message: str) -> AnalysisOutcome:
        """Leave the record in the error state; a store that refuses even that is only logged"""
        try:
            await self._mark_failed(document_id, message)
        except DatabaseError as e:
            logger.error(f"Could not record failure for {document_id}: {e.message}", extra={"document_id": document_id})
        return AnalysisOutcome(
            id=document_id, success=False, status=DocumentStatus.ERROR, message="Analysis failed", error=message
        )

    async def analyze_many(self, document_ids: Iterable[str]) -> Dict[str, AnalysisOutcome]:
        """Analyse every id independently; one document failing never stops the others"""
        await self.records.ping()
        ids = list(dict.fromkeys(document_ids))
        semaphore = asyncio.Semaphore(self.settings.max_concurrent)

        async def run(document_id: str):
            async with semaphore:
                return await self.analyze(document_id)

        logger.info(f"Batch analysis of {len(ids)} documents (max {self.settings.max_concurrent} at once)")
        results = await asyncio.gather(*(run(i) for i in ids), return_exceptions=True)

        outcomes: Dict[str, AnalysisOutcome] = {}
        store_failed = False
        for document_id, result in zip(ids, results):
            if isinstance(result, AnalysisOutcome):
                outcomes[document_id] = result
                continue
            store_failed = store_failed or isinstance(result, DatabaseError)
            if isinstance(result, DocumentNotFoundError):
                message = "Document not found"
            else:
                message = "Analysis failed"
                logger.error(f"Batch run for {document_id} raised {result!r}", extra={"document_id": document_id})
            outcomes[document_id] = AnalysisOutcome(
                id=document_id, success=False, status=DocumentStatus.ERROR, message=message, error=str(result)
            )

        if store_failed:
            # a batch error only when the store is gone, not for one refused write
            await self.records.ping()
        succeeded = sum(1 for o in outcomes.values() if o.success)
        logger.info(f"Batch analysis finished: {succeeded}/{len(ids)} succeeded")
        return outcomes

    async def _source_for(self, record: dict) -> SourceRef:
        file_id = record.get("fileId")
        if file_id:
            data = await self.artifacts.get(file_id)
            if data is not None:
                return SourceRef.from_upload(data, record.get("filename", ""), record.get("contentType"))
        if record.get("sourcePath"):
            return SourceRef.from_path(record["sourcePath"], record.get("filename", ""))
        if record.get("sourceUrl"):
            return SourceRef.from_url(record["sourceUrl"], record.get("filename", ""))
        raise AcquisitionError("no stored content or source location for document")

    async def _call_stage(self, stage: str, awaitable, timeout: float, document_id: str):
        """Run one capability call. Returns (result, failure message)"""
        try:
            with PerformanceMonitor(f"{stage} stage", logger, threshold_ms=timeout * 500, document_id=document_id):
                result = await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            return None, f"{stage} failed: timed out after {timeout:g}s"
        except DatabaseError:
            raise
        except StageError as e:
            return None, f"{stage} failed: {e.message}"
        except Exception as e:
            logger.exception(f"{stage} raised unexpectedly", extra={"document_id": document_id})
            return None, f"{stage} failed: {e}"
        return result, None

    async def _mark_failed(self, document_id: str, message: str):
        await self.records.update(document_id, {
            "status": DocumentStatus.ERROR.value,
            "analyzed": False,
            "error": message,
            "updatedAt": datetime.utcnow(),
        })

    def _outcome(self, document_id: str, state: AnalysisState) -> AnalysisOutcome:
        if state.get("failure"):
            return AnalysisOutcome(
                id=document_id, success=False, status=DocumentStatus.ERROR,
                message="Analysis failed", error=state["failure"]
            )
        if state.get("warning"):
            return AnalysisOutcome(
                id=document_id, success=False, status=DocumentStatus.ERROR,
                message="Analysed without normalization", error=state["warning"], tags=state.get("tags", [])
            )
        return AnalysisOutcome(
            id=document_id, success=True, status=DocumentStatus.COMPLETED,
            message="Analysis completed", tags=state.get("tags", [])
        )


def _route_failure(state: AnalysisState) -> str:
    return "fail" if state.get("failure") else "ok"
