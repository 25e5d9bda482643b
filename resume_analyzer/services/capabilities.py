"""
The three capabilities the pipeline depends on: turning a source into text,
fixing that text, and extracting a candidate profile from it.

Blocking work (file parsing, downloads, Ollama HTTP calls) runs in the default
executor so a slow document never stalls the event loop.
"""
import asyncio
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

from resume_analyzer.helpers.parsing import extract_text_from_bytes, fetch_url, read_path
from resume_analyzer.helpers.prompts import FIX_PROMPT, FIX_SYSTEM, PARSE_PROMPT, PARSE_SYSTEM
from resume_analyzer.models.analysis import CandidateAnalysisResult, ExperienceLevel
from resume_analyzer.models.schemas import SourceRef
from resume_analyzer.models.settings import LLMSettings, PipelineSettings
from resume_analyzer.services.taxonomy import coerce_profile
from resume_analyzer.utils.exceptions import (
    AcquisitionError,
    ExternalServiceError,
    ExtractionError,
    NormalizationError,
    retry_with_logging,
)
from resume_analyzer.utils.logging_config import get_logger
from resume_analyzer.utils.utils import ollama_generate, safe_json

logger = get_logger(__name__)

REQUIRED_FIELDS = ("candidateName", "experienceLevel", "primaryDepartment")


class TextFixer(ABC):
    @abstractmethod
    async def normalize_text(self, text: str) -> str:
        ...


class ProfileParser(ABC):
    @abstractmethod
    async def extract_profile(self, text: str) -> CandidateAnalysisResult:
        ...


class TextAcquirer:
    """Reads uploads, local files and URLs into cleaned text"""

    def __init__(self, settings: PipelineSettings = None):
        self.settings = settings or PipelineSettings()

    async def extract_text(self, source: SourceRef) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._extract, source)

    def _extract(self, source: SourceRef) -> str:
        content_type = source.content_type
        if source.kind == "upload":
            data, filename = source.content or b"", source.filename
        elif source.kind == "path":
            data, filename = read_path(source.location)
        elif source.kind == "url":
            data, filename, content_type = fetch_url(source.location, timeout=self.settings.download_timeout)
            filename = source.filename or filename
        else:
            raise AcquisitionError(f"unsupported source kind: {source.kind}")

        text = extract_text_from_bytes(data, filename, content_type, max_length=self.settings.max_text_length)
        if len(text) < self.settings.min_text_length:
            raise AcquisitionError(f"insufficient text extracted ({len(text)} characters)")
        logger.debug(f"Extracted {len(text)} characters from {filename or source.kind}")
        return text


class _OllamaCapability:
    """Ollama call with retries, bounded by the pipeline stage it runs in.

    ``stage_timeout`` caps the total time spent across attempts; each HTTP
    timeout is cut to what is left. When the awaiting stage is cancelled (the
    pipeline's ``wait_for`` fired) the worker thread makes no further attempts.
    """

    def __init__(self, settings: LLMSettings = None, stage_timeout: float = None):
        self.settings = settings or LLMSettings()
        self.stage_timeout = stage_timeout

    def _generate(self, prompt: str, cancelled: threading.Event, **kwargs) -> str:
        deadline = time.monotonic() + self.stage_timeout if self.stage_timeout else None

        def attempt():
            if cancelled.is_set():
                raise TimeoutError("stage was cancelled")
            timeout = self.settings.timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"stage budget of {self.stage_timeout:g}s used up")
                timeout = min(timeout, remaining)
            return ollama_generate(prompt, settings=self.settings, timeout=timeout, **kwargs)

        call = retry_with_logging(
            max_attempts=self.settings.retry_attempts,
            backoff_factor=self.settings.retry_backoff,
            exceptions=(ExternalServiceError,),
            logger=logger
        )(attempt)
        return call()

    async def _run(self, prompt: str, **kwargs) -> str:
        loop = asyncio.get_running_loop()
        cancelled = threading.Event()
        try:
            return await loop.run_in_executor(None, lambda: self._generate(prompt, cancelled, **kwargs))
        except asyncio.CancelledError:
            cancelled.set()
            raise


class OllamaTextFixer(_OllamaCapability, TextFixer):
    async def normalize_text(self, text: str) -> str:
        try:
            fixed = await self._run(
                FIX_PROMPT.format(doc=text),
                system=FIX_SYSTEM,
                temperature=self.settings.fixer_temperature
            )
        except ExternalServiceError as e:
            raise NormalizationError(e.message, cause=e) from e
        except TimeoutError as e:
            raise NormalizationError(str(e), cause=e) from e
        fixed = (fixed or "").strip()
        if not fixed:
            raise NormalizationError("fixer returned no text")
        return fixed


class OllamaProfileParser(_OllamaCapability, ProfileParser):
    async def extract_profile(self, text: str) -> CandidateAnalysisResult:
        try:
            resp = await self._run(PARSE_PROMPT.format(doc=text), system=PARSE_SYSTEM, fmt="json")
        except ExternalServiceError as e:
            raise ExtractionError(e.message, cause=e) from e
        except TimeoutError as e:
            raise ExtractionError(str(e), cause=e) from e
        data = safe_json(resp or "", fallback=None)
        if not isinstance(data, dict):
            raise ExtractionError("model did not return a JSON object")
        return validate_extraction(data)


def validate_extraction(raw: Dict[str, Any]) -> CandidateAnalysisResult:
    """Reject output missing the fields every record needs, then coerce the rest leniently"""
    missing = [f for f in REQUIRED_FIELDS if not str(raw.get(f) or "").strip()]
    if missing:
        raise ExtractionError(f"missing required fields: {', '.join(missing)}", missing_fields=missing)
    try:
        ExperienceLevel.coerce(raw["experienceLevel"])
    except ValueError as e:
        raise ExtractionError(str(e), missing_fields=["experienceLevel"]) from e
    return coerce_profile(raw)
