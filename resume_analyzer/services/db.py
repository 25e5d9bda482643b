import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING, TEXT

# Import logging
from resume_analyzer.models.settings import AppSettings, get_settings
from resume_analyzer.services.search import SEARCH_WEIGHTS
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)

CVS_COLLECTION = "cvs"
ARTIFACT_BUCKET = "artifacts"
TEXT_INDEX_NAME = "cv_text_search"

_client = None


def get_client(settings: AppSettings = None):
    """Create the motor client on first use so importing this module never connects"""
    global _client
    if _client is None:
        settings = settings or get_settings()
        logger.info(f"Initializing MongoDB connection to database: {settings.db_name}")
        _client = motor.motor_asyncio.AsyncIOMotorClient(settings.mongo_details)
        logger.info("MongoDB client initialized successfully")
    return _client


def get_database(settings: AppSettings = None):
    settings = settings or get_settings()
    return get_client(settings)[settings.db_name]


def cvs_collection(settings: AppSettings = None):
    return get_database(settings)[CVS_COLLECTION]


async def _create_index(coll, keys, **kwargs):
    try:
        await coll.create_index(keys, **kwargs)
        logger.debug(f"Created index on {coll.name}: {keys}")
    except Exception as e:
        if "already exists" in str(e).lower():
            logger.debug(f"Index on {coll.name} {keys} already exists")
        else:
            logger.warning(f"Could not create index on {coll.name} {keys}: {e}")


async def init_indexes(coll=None):
    """Index initialization for the cvs collection."""
    logger.info("Starting database index initialization")
    coll = coll if coll is not None else cvs_collection()

    await _create_index(coll, [("id", ASCENDING)], unique=True)
    await _create_index(coll, [("fileId", ASCENDING)], unique=True)
    await _create_index(coll, [("tags", ASCENDING)])
    await _create_index(coll, [("analyzed", ASCENDING)])
    await _create_index(coll, [("department", ASCENDING)])
    await _create_index(coll, [("uploadDate", DESCENDING)])
    await _create_index(
        coll,
        [(field, TEXT) for field in SEARCH_WEIGHTS],
        weights=dict(SEARCH_WEIGHTS),
        name=TEXT_INDEX_NAME,
        default_language="english",
    )

    logger.info("Database index initialization completed")
