"""
Liveness and readiness probes.

Readiness only depends on the relational store: the cache is optional
for correctness, so its state is reported but never fails the probe.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import best_effort, cache
from app.database import get_db
from app.models import Comment, Post

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])

REQUIRED_COLUMNS: dict[str, set[str]] = {
    model.__tablename__: {column.name for column in model.__table__.columns}
    for model in (Post, Comment)
}


def _schema_problems(session) -> list[str]:
    inspector = inspect(session.connection())
    problems: list[str] = []
    for table, required in REQUIRED_COLUMNS.items():
        if not inspector.has_table(table):
            problems.append(f"missing table: {table}")
            continue
        present = {column["name"] for column in inspector.get_columns(table)}
        for column in sorted(required - present):
            problems.append(f"{table} missing required column: {column}")
    return problems


@router.get("/liveness")
async def liveness():
    return {"status": "alive"}


@router.get("/readiness")
async def readiness(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        problems = await db.run_sync(_schema_problems)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Readiness check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "unreachable"},
        )

    cache_ok = await best_effort(cache.ping(), "ping")
    body = {
        "status": "ready" if not problems else "unavailable",
        "database": "ok" if not problems else "schema mismatch",
        "cache": "ok" if cache_ok else "unavailable",
    }
    if problems:
        body["problems"] = problems
        return JSONResponse(status_code=503, content=body)
    return body
