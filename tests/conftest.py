import asyncio
import copy
import uuid
from datetime import datetime, timedelta

import pytest

from resume_analyzer.models.schemas import DocumentRecord
from resume_analyzer.models.settings import PipelineSettings
from resume_analyzer.services.pipeline import AnalysisPipeline
from resume_analyzer.services.store import InMemoryArtifactStore, InMemoryRecordStore
from resume_analyzer.services.taxonomy import coerce_profile
from resume_analyzer.utils.exceptions import AcquisitionError, ExtractionError, NormalizationError

SAMPLE_PROFILE = {
    "candidateName": "Maria Lopez",
    "age": "29",
    "experienceLevel": "Mid-Level (2-5 years)",
    "primaryDepartment": "Housekeeping",
    "overallScore": 78,
    "scoreComponents": {
        "departmentMatch": 80,
        "technicalQualification": 70,
        "experienceValue": 75,
        "languageProficiency": 90,
        "practicalFactors": 65,
    },
    "departmentScores": [
        {"category": "Accommodation Services", "department": "Housekeeping", "score": 85},
        {"category": "Accommodation Services", "department": "Laundry", "score": 61},
        {"category": "Food & Beverage", "department": "Kitchen", "score": 60},
    ],
    "roleSkills": {
        "customerFacing": [{"name": "Guest Communication", "level": 4}],
        "operational": [{"name": "Safety Compliance", "level": 3}, {"name": "System Knowledge", "level": 2}],
        "administrative": [{"name": "Reporting", "level": 1}],
    },
    "languages": [{"language": "English", "level": 4}, {"language": "Spanish", "level": 5}],
    "certifications": [{"name": "First Aid", "issuer": "Red Cross"}],
    "personalAttributes": {"availability": "Immediate", "salaryExpectation": "EUR 1,800 per month"},
    "recommendedPositions": [{"title": "Room Attendant", "department": "Housekeeping", "matchScore": 82}],
    "education": {"level": "High School", "fields": ["Hospitality"]},
    "experience": {"years": 4, "duration": "4 years", "establishments": ["Hotel Sol"], "position": "Room Attendant"},
    "demographics": {"email": "maria.lopez@example.com", "phone": "+34 600 123 456", "gender": "Female"},
}

SAMPLE_TAGS = [
    "dept:Housekeeping",
    "dept:Laundry",
    "skill:Guest Communication",
    "skill:Safety Compliance",
    "cert:First Aid",
    "exp:Mid-Level",
    "exp:3-5 years",
]

RESUME_TEXT = (
    "Maria Lopez\n"
    "Room attendant with four years of housekeeping experience at Hotel Sol.\n"
    "Languages: English, Spanish. First Aid certified."
)


class StubAcquirer:
    """Decodes uploads as UTF-8; content starting with BROKEN is unreadable"""

    def __init__(self, delay: float = 0):
        self.delay = delay

    async def extract_text(self, source):
        if self.delay:
            await asyncio.sleep(self.delay)
        data = source.content or b""
        if data.startswith(b"BROKEN"):
            raise AcquisitionError("unsupported file format")
        return data.decode("utf-8")


class StubFixer:
    """Appends a marker line; text containing FIXER-FAIL makes it fail"""

    def __init__(self, delay: float = 0):
        self.delay = delay
        self.calls = 0

    async def normalize_text(self, text):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if "FIXER-FAIL" in text:
            raise NormalizationError("fixer unavailable")
        return text + "\n[fixed]"


class StubParser:
    """Returns the sample profile named after the first line of the text"""

    def __init__(self, profile_data=None):
        self.profile_data = profile_data or SAMPLE_PROFILE
        self.seen = []

    async def extract_profile(self, text):
        self.seen.append(text)
        if "PARSER-FAIL" in text:
            raise ExtractionError("missing required fields: candidateName", missing_fields=["candidateName"])
        data = copy.deepcopy(self.profile_data)
        data["candidateName"] = text.splitlines()[0]
        return coerce_profile(data)


@pytest.fixture
def sample_profile_data():
    return copy.deepcopy(SAMPLE_PROFILE)


@pytest.fixture
def records():
    return InMemoryRecordStore()


@pytest.fixture
def artifacts():
    return InMemoryArtifactStore()


@pytest.fixture
def make_pipeline(records, artifacts):
    def _make(acquirer=None, fixer=None, parser=None, **settings):
        return AnalysisPipeline(
            records,
            artifacts,
            acquirer or StubAcquirer(),
            fixer or StubFixer(),
            parser or StubParser(),
            settings=PipelineSettings(**settings),
        )
    return _make


@pytest.fixture
def register(records, artifacts):
    """Store an upload the way POST /api/cvs does; returns the document id"""
    async def _register(text: str, document_id: str = None, **fields) -> str:
        document_id = document_id or str(uuid.uuid4())
        file_id = str(uuid.uuid4())
        record = DocumentRecord(id=document_id, filename=f"{document_id}.txt", file_id=file_id, **fields)
        await records.put(record.to_document())
        await artifacts.put(file_id, text.encode("utf-8"))
        return document_id
    return _register


@pytest.fixture
def seed(records):
    """Insert already-analysed records directly, oldest first"""
    async def _seed(docs):
        start = datetime(2024, 1, 1)
        stored = []
        for i, doc in enumerate(docs):
            doc = dict(doc)
            doc.setdefault("id", str(uuid.uuid4()))
            doc.setdefault("fileId", str(uuid.uuid4()))
            doc.setdefault("filename", f"{doc['id']}.pdf")
            doc.setdefault("uploadDate", start + timedelta(minutes=i))
            await records.put(doc)
            stored.append(doc)
        return stored
    return _seed
