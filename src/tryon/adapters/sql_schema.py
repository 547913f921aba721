"""SQLAlchemy Core schema shared by the SQL job and quota stores."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import make_url

metadata = MetaData()

jobs_table = Table(
    "tryon_jobs",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("owner_scope", String(255), nullable=False, index=True),
    Column("human_image_ref", Text, nullable=False),
    Column("garment_image_ref", Text, nullable=False),
    Column("category", String(32), nullable=False),
    Column("garment_description", Text),
    Column("status", String(16), nullable=False, index=True),
    Column("provider_job_id", String(255), unique=True),
    Column("webhook_url", Text),
    Column("result_ref", Text),
    Column("origin_fallback_ref", Text),
    Column("error", Text),
    Column("completion_claim", String(64)),
    Column("claimed_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

job_history_table = Table(
    "tryon_job_history",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("job_id", String(64), ForeignKey("tryon_jobs.id"), nullable=False, index=True),
    Column("from_status", String(16)),
    Column("to_status", String(16), nullable=False),
    Column("at", DateTime(timezone=True), nullable=False),
    Column("reason", Text),
)

quota_table = Table(
    "tryon_quota",
    metadata,
    Column("scope", String(255), primary_key=True),
    Column("remaining", Integer, nullable=False),
)


def create_sql_engine(url: str) -> Engine:
    """Build an engine and make sure the schema exists.

    SQLite files get their parent directory created; connections are shared
    across worker threads because all calls go through asyncio.to_thread.
    """
    parsed = make_url(url)
    connect_args = {}
    if parsed.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": 30}
        database = parsed.database
        if database and database != ":memory:":
            parent = os.path.dirname(os.path.abspath(database))
            os.makedirs(parent, exist_ok=True)
    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    metadata.create_all(engine)
    return engine


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
