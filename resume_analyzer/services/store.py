"""
Record and artifact stores.

``RecordStore`` holds document records keyed by ``id``; ``ArtifactStore`` holds
opaque blobs (raw uploads and text artifacts) keyed by name. Both have a motor
backed implementation and an in-memory one that understands the same filter
subset the search engine emits.
"""
import copy
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from resume_analyzer.services.search import field_values, text_score
from resume_analyzer.utils.exceptions import DatabaseError, ExceptionContext, ValidationError
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)


class RecordStore(ABC):

    @abstractmethod
    async def ping(self) -> None:
        """Raise DatabaseError when the store is unreachable"""

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def put(self, doc: Dict[str, Any]) -> None:
        """Insert or replace a record by ``id``; ``fileId`` must stay unique"""

    @abstractmethod
    async def update(self, document_id: str, set_fields: Dict[str, Any], unset_fields: Iterable[str] = ()) -> bool:
        ...

    @abstractmethod
    async def query(
        self, filter: Dict[str, Any], sort: List[tuple] = None, skip: int = 0, limit: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        ...


class ArtifactStore(ABC):

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...


# -------- MongoDB --------
class MongoRecordStore(RecordStore):
    def __init__(self, collection):
        self.coll = collection

    async def ping(self) -> None:
        try:
            await self.coll.database.client.admin.command("ping")
        except Exception as e:
            raise DatabaseError(f"MongoDB is unreachable: {e}", operation="ping", collection=self.coll.name, cause=e) from e

    async def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        with ExceptionContext("records.get", logger, document_id=document_id):
            return await self.coll.find_one({"id": document_id}, {"_id": 0})

    async def put(self, doc: Dict[str, Any]) -> None:
        with ExceptionContext("records.put", logger, document_id=doc.get("id")):
            clash = await self.coll.find_one({"fileId": doc["fileId"], "id": {"$ne": doc["id"]}}, {"id": 1})
            if clash:
                raise ValidationError("fileId already belongs to another document", field="fileId", value=doc["fileId"])
            await self.coll.replace_one({"id": doc["id"]}, doc, upsert=True)

    async def update(self, document_id: str, set_fields: Dict[str, Any], unset_fields: Iterable[str] = ()) -> bool:
        change = {}
        if set_fields:
            change["$set"] = set_fields
        unset_fields = list(unset_fields)
        if unset_fields:
            change["$unset"] = {field: "" for field in unset_fields}
        if not change:
            return True
        with ExceptionContext("records.update", logger, document_id=document_id):
            result = await self.coll.update_one({"id": document_id}, change)
            return result.matched_count > 0

    async def query(self, filter, sort=None, skip=0, limit=0):
        projection = {"_id": 0}
        if "$text" in filter or any("$text" in c for c in filter.get("$and", [])):
            projection["score"] = {"$meta": "textScore"}
        with ExceptionContext("records.query", logger):
            total = await self.coll.count_documents(filter)
            cursor = self.coll.find(filter, projection)
            if sort:
                cursor = cursor.sort(sort)
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=None)
        return docs, total


class GridFSArtifactStore(ArtifactStore):
    def __init__(self, database, bucket_name: str = "artifacts"):
        self.database = database
        self.bucket_name = bucket_name
        self.bucket = AsyncIOMotorGridFSBucket(database, bucket_name=bucket_name)

    async def put(self, key: str, data: bytes) -> None:
        with ExceptionContext("artifacts.put", logger, artifact=key):
            # overwrite: GridFS keeps revisions, so drop older ones first
            cursor = self.bucket.find({"filename": key})
            async for existing in cursor:
                await self.bucket.delete(existing._id)
            await self.bucket.upload_from_stream(key, data)

    async def get(self, key: str) -> Optional[bytes]:
        with ExceptionContext("artifacts.get", logger, artifact=key):
            try:
                stream = await self.bucket.open_download_stream_by_name(key)
            except NoFile:
                return None
            return await stream.read()

    async def exists(self, key: str) -> bool:
        with ExceptionContext("artifacts.exists", logger, artifact=key):
            found = await self.database[f"{self.bucket_name}.files"].find_one({"filename": key}, {"_id": 1})
            return found is not None


# -------- In-memory --------
def _compare(values: List[Any], op: str, operand: Any) -> bool:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            if op == "$gte" and value >= operand:
                return True
            if op == "$gt" and value > operand:
                return True
            if op == "$lte" and value <= operand:
                return True
            if op == "$lt" and value < operand:
                return True
        except TypeError:
            continue
    return False


def _match_condition(doc: Dict[str, Any], path: str, condition: Any) -> bool:
    values = field_values(doc, path)
    if not isinstance(condition, dict) or not any(k.startswith("$") for k in condition):
        return condition in values or (condition is None and not values)

    for op, operand in condition.items():
        if op == "$options":
            continue
        if op == "$all":
            if not all(item in values for item in operand):
                return False
        elif op == "$in":
            if not any(item in values for item in operand):
                return False
        elif op == "$ne":
            if operand in values:
                return False
        elif op == "$exists":
            if bool(values) != bool(operand):
                return False
        elif op == "$regex":
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            pattern = re.compile(operand, flags)
            if not any(isinstance(v, str) and pattern.search(v) for v in values):
                return False
        elif op in ("$gte", "$gt", "$lte", "$lt"):
            if not _compare(values, op, operand):
                return False
        else:
            raise ValidationError(f"Unsupported query operator: {op}", field=path, value=op)
    return True


def matches(doc: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$text":
            if text_score(doc, condition.get("$search", "")) <= 0:
                return False
        elif not _match_condition(doc, key, condition):
            return False
    return True


def _text_term(filter: Dict[str, Any]) -> Optional[str]:
    if "$text" in filter:
        return filter["$text"].get("$search")
    for sub in filter.get("$and", []):
        term = _text_term(sub)
        if term:
            return term
    return None


def _sort_value(value):
    # None sorts below everything, as in MongoDB
    if value is None:
        return (0, datetime.min)
    return (1, value)


class InMemoryRecordStore(RecordStore):
    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}

    async def ping(self) -> None:
        return None

    async def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        doc = self.docs.get(document_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, doc: Dict[str, Any]) -> None:
        for other in self.docs.values():
            if other["id"] != doc["id"] and other.get("fileId") == doc.get("fileId"):
                raise ValidationError("fileId already belongs to another document", field="fileId", value=doc["fileId"])
        self.docs[doc["id"]] = copy.deepcopy(doc)

    async def update(self, document_id: str, set_fields: Dict[str, Any], unset_fields: Iterable[str] = ()) -> bool:
        doc = self.docs.get(document_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(set_fields or {}))
        for field in unset_fields:
            doc.pop(field, None)
        return True

    async def query(self, filter, sort=None, skip=0, limit=0):
        found = [copy.deepcopy(d) for d in self.docs.values() if matches(d, filter or {})]
        term = _text_term(filter or {})
        if term:
            for doc in found:
                doc["score"] = text_score(doc, term)

        for key, direction in reversed(sort or []):
            if isinstance(direction, dict):
                # {"$meta": "textScore"} ranks best first
                found.sort(key=lambda d: d.get("score") or 0, reverse=True)
            else:
                found.sort(key=lambda d, k=key: _sort_value(d.get(k)), reverse=direction < 0)

        total = len(found)
        end = skip + limit if limit else None
        return found[skip:end], total


class InMemoryArtifactStore(ArtifactStore):
    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)

    async def get(self, key: str) -> Optional[bytes]:
        return self.blobs.get(key)

    async def exists(self, key: str) -> bool:
        return key in self.blobs
