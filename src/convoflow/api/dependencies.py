"""Process-wide store and pipeline, exposed as FastAPI dependencies.

Tests replace them with app.dependency_overrides.
"""

from functools import lru_cache

from convoflow.infra.repositories.pg_store import PostgresStore
from convoflow.ingest.pipeline import IngestPipeline


@lru_cache(maxsize=1)
def get_pipeline() -> IngestPipeline:
    """Pipeline over Postgres, configured from the environment."""
    return IngestPipeline.from_env(PostgresStore())
