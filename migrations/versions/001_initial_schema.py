"""Ingestion schema: deliveries, instances, contacts, conversations, messages.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

_SQL_DIR = Path(__file__).resolve().parents[1] / "sql"


def upgrade() -> None:
    sql = (_SQL_DIR / "001_initial.sql").read_text(encoding="utf-8")
    # exec_driver_sql: the file holds several statements
    op.get_bind().exec_driver_sql(sql)


def downgrade() -> None:
    op.get_bind().exec_driver_sql(
        """
        DROP TABLE IF EXISTS conversation_events;
        DROP TABLE IF EXISTS messages;
        DROP TABLE IF EXISTS conversations;
        DROP TABLE IF EXISTS contacts;
        DROP TABLE IF EXISTS whatsapp_numbers;
        DROP TABLE IF EXISTS webhook_deliveries;
        DROP TABLE IF EXISTS workspace_api_keys;
        """
    )
