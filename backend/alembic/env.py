"""Migrations for the job store. The URL is the one the worker uses."""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config
from sqlalchemy.pool import NullPool

from job_digest.database import raw_url, sync_url
from job_digest.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# render_as_string keeps the password; configparser needs % doubled
DB_URL = sync_url(raw_url).render_as_string(hide_password=False)
config.set_main_option("sqlalchemy.url", DB_URL.replace("%", "%%"))


def migrate_offline():
    context.configure(
        url=DB_URL,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online():
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = DB_URL
    is_sqlite = raw_url.drivername.startswith("sqlite")
    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=NullPool,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata, render_as_batch=is_sqlite)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
