"""
MongoDB connection for the persistent store.

DATABASE_URL is optional: without it the API runs on the in-memory store and
``connect`` returns ``(None, None)``.
"""
import logging
from typing import Optional, Tuple

from pymongo import MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)


def connect(database_url: str, database_name: str) -> Tuple[Optional[MongoClient], Optional[Database]]:
    if not database_url:
        return None, None
    client = MongoClient(database_url)
    db = client[database_name]
    logger.info("Connected to MongoDB database %s", database_name)
    return client, db


def describe(db: Optional[Database], database_url: str) -> dict:
    """Connection summary for the /test endpoint."""
    response = {
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database_url else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is None:
        return response

    response["database"] = "✅ Available"
    response["database_name"] = db.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response
