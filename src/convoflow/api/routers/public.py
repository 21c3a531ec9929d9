"""Liveness probe for the ingestion service.

Does not touch the database: a slow Postgres must not get the container
restarted while webhooks are still being acknowledged.
"""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}
