"""
Tâches Celery du moteur de synchronisation.

- run_distribution_item: exécute un élément de distribution (dispatché après commit)
- check_windowed_conditions: vérification quotidienne des conditions fenêtrées (beat, 01:00)
- cleanup_distribution_items: purge des éléments terminés au-delà de la rétention
- report_stuck_items: met à jour la jauge des éléments bloqués (jamais rejoués automatiquement)
- rerun_items: relance manuelle d'une sélection (lot avec pause coopérative)
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog

from syncmesh.app.celery_app import celery_app
from syncmesh.core.container import container
from syncmesh.infra.ops.idempotency import idempotent_task, make_idem_key

log = structlog.get_logger(__name__).bind(component="tasks")

PAUSE_KEY = "syncmesh:batch:pause"


def _store():
    return container.idempotency


def _daily_key(task: str) -> str:
    return make_idem_key(task, datetime.now(UTC).date().isoformat())


@celery_app.task(name="syncmesh.tasks.run_distribution_item")
def run_distribution_item(item_id: int) -> dict:
    result = container.distributor.run(int(item_id))
    return {
        "item_id": result.item_id,
        "ok": result.ok,
        "status": result.status,
        "message": result.message,
        "skipped": result.skipped,
    }


@celery_app.task(name="syncmesh.tasks.check_windowed_conditions")
@idempotent_task(_store, key_builder=lambda: _daily_key("check_windowed_conditions"),
                 ttl_seconds=3600)
def check_windowed_conditions() -> int:
    created = container.sync_engine.check_windowed_conditions()
    return len(created)


@celery_app.task(name="syncmesh.tasks.cleanup_distribution_items")
@idempotent_task(_store, key_builder=lambda: _daily_key("cleanup_distribution_items"),
                 ttl_seconds=3600)
def cleanup_distribution_items() -> int:
    return container.distributor.cleanup()


@celery_app.task(name="syncmesh.tasks.report_stuck_items")
def report_stuck_items() -> list[int]:
    stuck = container.distributor.stuck_items()
    if stuck:
        log.warning("distribution_items_stuck", count=len(stuck), ids=[i.id for i in stuck])
    return [i.id for i in stuck]


def request_pause() -> None:
    """Demande l'arrêt du lot en cours avant l'élément suivant."""
    container.idempotency.set_state(PAUSE_KEY, "1", ttl=3600)


def clear_pause() -> None:
    container.idempotency.release(PAUSE_KEY)


def pause_requested() -> bool:
    return container.idempotency.get_state(PAUSE_KEY) == "1"


@celery_app.task(name="syncmesh.tasks.rerun_items")
def rerun_items(item_ids: list[int], start_at: int = 0) -> dict:
    report = container.distributor.run_batch(item_ids, should_pause=pause_requested,
                                             start_at=start_at)
    return {
        "summary": report.summary(),
        "succeeded": report.succeeded,
        "failed": report.failed,
        "paused": report.paused,
        "next_index": report.next_index,
    }
