"""Configuration centralisée Celery pour les tâches de synchronisation.

Ce module définit la configuration globale de Celery (retries, timeouts, acks) ainsi que le
planning beat: vérification quotidienne des conditions fenêtrées et purge des éléments de
distribution terminés.
"""

# ============================================================
# Module : syncmesh/app/celeryconfig.py
# Objet  : Configuration centralisée Celery (retries, timeouts, beat).
# ============================================================

from __future__ import annotations

from celery.schedules import crontab

# Retries & acks
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
task_time_limit = 300  # secondes
broker_pool_limit = 10

# Politique de retry par défaut (à spécialiser par tâche)
max_retries = 5
retry_backoff = True
retry_backoff_max = 60  # secondes

timezone = "UTC"
enable_utc = True

beat_schedule = {
    "check-windowed-conditions": {
        "task": "syncmesh.tasks.check_windowed_conditions",
        "schedule": crontab(hour=1, minute=0),
    },
    "cleanup-distribution-items": {
        "task": "syncmesh.tasks.cleanup_distribution_items",
        "schedule": crontab(hour=3, minute=30),
    },
    "report-stuck-items": {
        "task": "syncmesh.tasks.report_stuck_items",
        "schedule": 300.0,
    },
}
