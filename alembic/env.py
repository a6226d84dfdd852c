"""
Environnement Alembic des tables du moteur de synchronisation.

L'URL provient des paramètres applicatifs (`DATABASE_URL`, .env compris); sans valeur, les
migrations visent un fichier sqlite local. Sur sqlite, les ALTER passent en mode batch.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[attr-defined]
from syncmesh.core.settings import get_settings
from syncmesh.infra.repo.models import Base

DEFAULT_URL = "sqlite:///./syncmesh.db"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    return get_settings().DATABASE_URL or config.get_main_option("sqlalchemy.url") or DEFAULT_URL


def _options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    """Génère le SQL sans connexion (bindings littéraux)."""
    url = _database_url()
    context.configure(url=url, literal_binds=True, **_options(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = _database_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
