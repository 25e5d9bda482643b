from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


# -------- Document records --------
class DocumentRecord(BaseModel):
    """One ingested resume. Stored with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    id: str
    filename: str
    upload_date: datetime = Field(default_factory=datetime.utcnow)
    status: DocumentStatus = DocumentStatus.PENDING
    analyzed: bool = False
    error: Optional[str] = None
    file_id: str
    content_type: Optional[str] = None
    source_url: Optional[str] = None
    source_path: Optional[str] = None
    original_text_key: Optional[str] = None
    fixed_text_key: Optional[str] = None
    parsed_data: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, Any]] = None
    tags: List[str] = Field(default_factory=list)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    age: Optional[int] = None
    department: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    birthdate: Optional[str] = None
    gender: Optional[str] = None
    expected_salary: Optional[float] = None
    analyzed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        """Storage form: camelCase keys, unset optionals omitted"""
        return self.model_dump(by_alias=True, exclude_none=True)


class SourceRef(BaseModel):
    """Where the pipeline reads a document from: uploaded bytes, a local path or a URL"""
    kind: str  # upload | path | url
    filename: str = ""
    content_type: Optional[str] = None
    content: Optional[bytes] = None
    location: Optional[str] = None

    @classmethod
    def from_upload(cls, content: bytes, filename: str, content_type: str = None) -> "SourceRef":
        return cls(kind="upload", content=content, filename=filename, content_type=content_type)

    @classmethod
    def from_path(cls, path: str, filename: str = "") -> "SourceRef":
        return cls(kind="path", location=path, filename=filename or path)

    @classmethod
    def from_url(cls, url: str, filename: str = "") -> "SourceRef":
        return cls(kind="url", location=url, filename=filename)


# -------- API payloads --------
class UploadPayload(BaseModel):
    """Base64 upload, same shape the ingestion middleware already sends"""
    filename: str
    base64_content: str
    content_type: Optional[str] = None
    id: Optional[str] = None


class UrlPayload(BaseModel):
    url: str
    filename: Optional[str] = None
    id: Optional[str] = None


class BatchAnalyzePayload(BaseModel):
    ids: List[str] = Field(min_length=1)


class AnalysisOutcome(BaseModel):
    id: str
    success: bool
    status: DocumentStatus
    message: str
    error: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class BatchAnalyzeResponse(BaseModel):
    results: Dict[str, AnalysisOutcome]
    succeeded: int
    failed: int
