"""Définition et chargement des paramètres de configuration de syncmesh.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
- Décrire le réseau de nœuds (local et distant) vu par ce processus
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Priorité: ENV_FILE, puis .env.{APP_ENV}, puis .env
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    _ENV_FILE_PATH = _candidate_specific if _candidate_specific.exists() else _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
    )
    APP_NAME: str = "syncmesh"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    REQUIRE_REDIS: bool = False
    OTLP_ENDPOINT: str | None = None
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/1"

    # Identité du réseau et topologie
    SYNC_NODE_ID: int = 1
    SYNC_NETWORK_HOST: str = "localhost"
    # CSV "id=base_url", ex: "1=https://a.example,2=https://a.example/fr"
    SYNC_NODES: str = ""
    # CSV "host=base_url[;inactive]"
    SYNC_REMOTES: str = ""
    SYNC_CONTENT_STORE_PATH: str | None = None

    # Distribution
    SYNC_STUCK_THRESHOLD_S: int = 300
    SYNC_DISTRIBUTION_RETENTION_DAYS: int = 3
    SYNC_REMOTE_TIMEOUT_S: float = 10.0
    SYNC_DEFAULT_CONFLICT_POLICY: str | None = None
    SYNC_LOCK_TIMEOUT_S: int = 30

    # Déduplication des déclencheurs (action, item)
    SYNC_DEDUP_WINDOW_S: int = 2


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
