"""
health.py — Liveness endpoint.

Used by container health checks, load balancers and the web client.
Always answers 200 while the process is up; `database` tells callers
whether MongoDB is reachable, so "API down" and "DB down" stay distinct.
"""

import logging

from fastapi import APIRouter
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from authentiscan.core import database as db_module
from authentiscan.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "0.1.0"


class HealthResponse(BaseModel):
    status: str  # "ok" whenever the process answers
    version: str
    database: str  # "connected" | "disconnected"
    environment: str


@router.get("", response_model=HealthResponse, summary="API health check")
async def health() -> HealthResponse:
    database = "disconnected"
    # Module reference so tests can swap db_module.db_client.
    if db_module.db_client.client is not None:
        try:
            await db_module.db_client.client.admin.command("ping")
            database = "connected"
        except PyMongoError as exc:
            logger.warning("Health check ping failed: %s", exc)

    return HealthResponse(
        status="ok",
        version=API_VERSION,
        database=database,
        environment=settings.environment,
    )
