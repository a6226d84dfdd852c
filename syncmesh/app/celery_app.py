"""
Module: celery_app.

But: Initialiser l'instance Celery du moteur de synchronisation et charger la config runtime
(retries, timeouts, planning beat).
Notes:
- Aucun secret loggé.
- Les tâches sont enregistrées par `syncmesh.tasks.sync_tasks` (include).
"""

from celery import Celery

from syncmesh.core.container import container

celery_app = Celery(
    "syncmesh",
    broker=container.settings.CELERY_BROKER_URL,
    backend=container.settings.CELERY_RESULT_BACKEND,
    include=["syncmesh.tasks.sync_tasks"],
)
# Load configuration from module (retries, timeouts, acks, beat)
celery_app.config_from_object("syncmesh.app.celeryconfig")
celery_app.conf.task_routes = {"syncmesh.tasks.*": {"queue": "default"}}

__all__ = ["celery_app"]
