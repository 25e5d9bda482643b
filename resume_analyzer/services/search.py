"""
Full-text and structured search over document records.

The engine only builds MongoDB-style filters and sort specs; the record store
runs them. ``text_score`` mirrors the weighted text index so the in-memory store
ranks results the same way.
"""
import math
import re
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from resume_analyzer.models.schemas import DocumentStatus
from resume_analyzer.models.search import NumericRange, SearchPage, SearchQuery
from resume_analyzer.models.settings import SearchSettings
from resume_analyzer.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)

# weighted text index: field -> weight
SEARCH_WEIGHTS = {
    "firstName": 10,
    "lastName": 10,
    "filename": 5,
    "tags": 5,
    "analysis.technicalSkills": 3,
    "analysis.softSkills": 3,
    "department": 3,
    "analysis.languages.name": 2,
    "analysis.education.level": 2,
    "analysis.education.fields": 2,
    "email": 1,
}

TEXT_SCORE = {"$meta": "textScore"}

PARTIAL_MATCH_FIELDS = ("first_name", "last_name", "department", "email", "phone")
EXACT_MATCH_FIELDS = ("birthdate", "gender")
RANGE_FIELDS = ("age", "expected_salary")

DEMOGRAPHIC_FIELDS = {
    "first_name": "firstName",
    "last_name": "lastName",
    "department": "department",
    "email": "email",
    "phone": "phone",
    "birthdate": "birthdate",
    "gender": "gender",
    "age": "age",
    "expected_salary": "expectedSalary",
}

_TOKEN_RE = re.compile(r"\w+")


def field_values(doc: Dict[str, Any], path: str) -> List[Any]:
    """All values at a dotted path, flattening lists on the way down"""
    values = [doc]
    for part in path.split("."):
        found = []
        for value in values:
            if isinstance(value, list):
                value_items = value
            else:
                value_items = [value]
            for item in value_items:
                if isinstance(item, dict) and part in item:
                    found.append(item[part])
        values = found
    out = []
    for value in values:
        if isinstance(value, list):
            out.extend(value)
        elif value is not None:
            out.append(value)
    return out


def tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall(str(text).lower())


def text_score(doc: Dict[str, Any], term: str) -> float:
    """Sum of field weights over every occurrence of a query token"""
    terms = set(tokenize(term))
    if not terms:
        return 0.0
    score = 0.0
    for field, weight in SEARCH_WEIGHTS.items():
        for value in field_values(doc, field):
            score += weight * sum(1 for token in tokenize(value) if token in terms)
    return score


def _range_filter(value_range: NumericRange) -> Optional[Dict[str, float]]:
    clause = {}
    if value_range.min is not None:
        clause["$gte"] = value_range.min
    if value_range.max is not None:
        clause["$lte"] = value_range.max
    return clause or None


def build_filter(query: SearchQuery) -> Dict[str, Any]:
    clauses: List[Dict[str, Any]] = []
    if query.search_term:
        clauses.append({"$text": {"$search": query.search_term}})
    if query.tags:
        clauses.append({"tags": {"$all": list(query.tags)}})

    demo = query.demographic
    for name in PARTIAL_MATCH_FIELDS:
        value = getattr(demo, name)
        if value and value.strip():
            field = DEMOGRAPHIC_FIELDS[name]
            clauses.append({field: {"$regex": re.escape(value.strip()), "$options": "i"}})
    for name in EXACT_MATCH_FIELDS:
        value = getattr(demo, name)
        if value and value.strip():
            clauses.append({DEMOGRAPHIC_FIELDS[name]: value.strip()})
    for name in RANGE_FIELDS:
        value_range = getattr(demo, name)
        clause = _range_filter(value_range) if value_range else None
        if clause:
            clauses.append({DEMOGRAPHIC_FIELDS[name]: clause})

    if query.analyzed is not None:
        clauses.append({"analyzed": query.analyzed})
    if query.status:
        clauses.append({"status": query.status})

    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def build_sort(query: SearchQuery) -> List[tuple]:
    if query.search_term:
        return [("score", TEXT_SCORE), ("uploadDate", DESCENDING)]
    return [("uploadDate", DESCENDING)]


def format_record(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Fill every field the API promises, whatever stage the record reached"""
    return {
        "id": doc.get("id"),
        "filename": doc.get("filename") or "",
        "uploadDate": doc.get("uploadDate"),
        "status": doc.get("status") or DocumentStatus.PENDING.value,
        "analyzed": bool(doc.get("analyzed", False)),
        "error": doc.get("error"),
        "fileId": doc.get("fileId"),
        "contentType": doc.get("contentType"),
        "sourceUrl": doc.get("sourceUrl"),
        "sourcePath": doc.get("sourcePath"),
        "originalTextKey": doc.get("originalTextKey"),
        "fixedTextKey": doc.get("fixedTextKey"),
        "parsedData": doc.get("parsedData") or {},
        "analysis": doc.get("analysis") or {},
        "tags": list(doc.get("tags") or []),
        "firstName": doc.get("firstName") or "",
        "lastName": doc.get("lastName") or "",
        "email": doc.get("email") or "",
        "phone": doc.get("phone") or "",
        "birthdate": doc.get("birthdate") or "",
        "gender": doc.get("gender") or "",
        "department": doc.get("department") or "",
        "age": doc.get("age"),
        "expectedSalary": doc.get("expectedSalary"),
        "analyzedAt": doc.get("analyzedAt"),
        "updatedAt": doc.get("updatedAt"),
        "score": doc.get("score"),
    }


class SearchEngine:
    """Runs search queries against a record store"""

    def __init__(self, records, settings: SearchSettings = None):
        self.records = records
        self.settings = settings or SearchSettings()

    def page_size(self, limit: Optional[int]) -> int:
        if not limit:
            return self.settings.page_size
        return max(1, min(limit, self.settings.max_page_size))

    async def search(self, query: SearchQuery) -> SearchPage:
        size = self.page_size(query.limit)
        skip = (query.page - 1) * size
        mongo_filter = build_filter(query)
        sort = build_sort(query)

        with PerformanceMonitor("search", logger, threshold_ms=500):
            docs, total = await self.records.query(mongo_filter, sort=sort, skip=skip, limit=size)

        logger.debug(f"Search matched {total} records (page {query.page}, size {size})")
        return SearchPage(
            records=[format_record(d) for d in docs],
            total=total,
            page=query.page,
            limit=size,
            pages=math.ceil(total / size) if total else 0,
        )
