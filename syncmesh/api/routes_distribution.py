"""Routes de la file de distribution.

Objectif du module
------------------
- Créer des éléments de distribution pour une racine et des destinations
- Exécuter un élément ou un lot (pause/reprise entre deux éléments)
- Lister les éléments (dont les éléments bloqués), relancer, purger
"""

from __future__ import annotations

from fastapi import APIRouter

from syncmesh.api.envelope import envelope_response
from syncmesh.api.schemas import BatchRequest, BatchResponse, DistributionItemOut, EnqueueRequest
from syncmesh.core.container import container
from syncmesh.services.distributor import DistributionOptions
from syncmesh.tasks.sync_tasks import clear_pause, pause_requested, request_pause

router = APIRouter(prefix="/distribution", tags=["distribution"])


@router.post("/enqueue", response_model=list[DistributionItemOut])
def enqueue(payload: EnqueueRequest):
    options = DistributionOptions(
        action=payload.action,
        actions=dict(payload.actions),
        conflict_policy=payload.conflict_policy,
        policies=dict(payload.policies),
    )
    return container.distributor.enqueue(payload.root_gid, payload.destination_ids, options)


@router.get("/items", response_model=list[DistributionItemOut])
def list_items(status: str | None = None, root_gid: str | None = None, limit: int = 200):
    return container.distributor.list_items(status=status, root_gid=root_gid, limit=limit)


@router.get("/stuck", response_model=list[DistributionItemOut])
def stuck_items(threshold_s: int | None = None):
    """Éléments init/started au-delà du seuil (remontés, jamais rejoués automatiquement)."""
    return container.distributor.stuck_items(threshold_s)


@router.post("/items/{item_id}/run")
def run_item(item_id: int):
    result = container.distributor.run(item_id)
    if result.ok:
        return envelope_response(True, result.message or f"item {item_id} {result.status}")
    return envelope_response(False, result.message or f"item {item_id} {result.status}")


@router.post("/items/{item_id}/requeue")
def requeue_item(item_id: int):
    if container.distributor.requeue(item_id):
        return envelope_response(True, f"item {item_id} requeued")
    return envelope_response(False, f"item {item_id} cannot be requeued")


@router.post("/batch", response_model=BatchResponse)
def run_batch(payload: BatchRequest):
    report = container.distributor.run_batch(payload.item_ids, should_pause=pause_requested,
                                             start_at=payload.start_at)
    return BatchResponse(
        summary=report.summary(),
        succeeded=report.succeeded,
        failed=report.failed,
        paused=report.paused,
        next_index=report.next_index,
        results=[
            {"item_id": r.item_id, "ok": r.ok, "status": r.status, "message": r.message}
            for r in report.results
        ],
    )


@router.post("/batch/pause")
def pause_batch():
    request_pause()
    return envelope_response(True, "batch will pause before the next item")


@router.post("/batch/resume")
def resume_batch():
    clear_pause()
    return envelope_response(True, "batch pause cleared")


@router.post("/cleanup")
def cleanup(retention_days: int | None = None):
    removed = container.distributor.cleanup(retention_days)
    return envelope_response(True, f"{removed} items removed")
