"""
MongoDB connection management using Motor (async driver).

Architecture decision: single DatabaseClient instance shared across all
requests via a module-level singleton. FastAPI's dependency injection
(get_db / require_db) gives routes clean access without importing the
singleton directly.

The connection is opened in FastAPI's lifespan (startup) and closed
on shutdown.

Collections:
  users     — one document per identity-provider account (credit balance lives here)
  scans     — one VerificationResult per verified media item
  payments  — one document per payment reference (idempotency key)
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from authentiscan.core.config import settings
from authentiscan.core.errors import DatabaseUnavailable

logger = logging.getLogger(__name__)

USERS = "users"
SCANS = "scans"
PAYMENTS = "payments"


class DatabaseClient:
    """
    Holds the Motor client and selected database.

    A class rather than bare globals so tests can safely replace
    .client and .db.
    """

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


# Module-level singleton shared by all app code
db_client = DatabaseClient()


async def connect_to_mongo() -> None:
    """
    Create the MongoDB connection, validate it with a ping and ensure indexes.

    Fails gracefully if MongoDB is unavailable — the API still responds but
    DB-dependent endpoints return 503.
    """
    logger.info("Connecting to MongoDB at %s", _redact_uri(settings.mongo_uri))
    try:
        db_client.client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            tlsCAFile=certifi.where(),
        )
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        await ensure_indexes(db_client.db)
        logger.info("MongoDB connection established (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "MongoDB unavailable at startup: %s. "
            "API running in degraded mode — DB endpoints will fail.",
            exc,
        )
        db_client.client = None
        db_client.db = None


async def close_mongo_connection() -> None:
    """Close the MongoDB connection gracefully on app shutdown."""
    if db_client.client is not None:
        db_client.client.close()
        logger.info("MongoDB connection closed")


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the core relies on for uniqueness and list queries."""
    await db[USERS].create_index([("external_id", ASCENDING)], unique=True, name="external_id_unique")
    await db[USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")

    await db[SCANS].create_index(
        [("user_id", ASCENDING), ("scan_id", ASCENDING)], unique=True, name="owner_scan_id"
    )
    await db[SCANS].create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)], name="user_scan_history"
    )
    await db[SCANS].create_index(
        [("status", ASCENDING), ("created_at", DESCENDING)], name="status_history"
    )

    await db[PAYMENTS].create_index([("reference", ASCENDING)], unique=True, name="reference_unique")


def get_db() -> AsyncIOMotorDatabase | None:
    """
    FastAPI dependency — inject the database into route handlers.

    Returns None when MongoDB is unavailable.
    """
    return db_client.db


def require_db(db: AsyncIOMotorDatabase | None) -> AsyncIOMotorDatabase:
    """Raise DatabaseUnavailable (503) when running in degraded mode."""
    if db is None:
        raise DatabaseUnavailable()
    return db


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
