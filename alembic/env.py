"""Alembic environment for the request document store."""

import sys
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

from alembic import context

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
load_dotenv()

from transcript_pipeline.config import get_settings
from transcript_pipeline.database import Base
from transcript_pipeline.models import request_document  # noqa: F401  registers request_documents

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

DATABASE_URL = get_settings().DATABASE_URL


def run_migrations_offline() -> None:
    """Emit SQL for DATABASE_URL without connecting."""
    context.configure(
        url=DATABASE_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations to DATABASE_URL."""
    connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool, connect_args=connect_args)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
