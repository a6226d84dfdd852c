"""Routes de détection et de réparation des erreurs de synchronisation."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from syncmesh.api.envelope import envelope_response
from syncmesh.api.schemas import RepairReportOut
from syncmesh.core.container import container

router = APIRouter(prefix="/repair", tags=["repair"])


@router.get("/items/{node_id}/{item_id}", response_model=RepairReportOut)
def check_item(node_id: int, item_id: int):
    """Classe l'élément sans rien modifier."""
    report = container.repairer.check_item(container.context(node_id), item_id)
    return RepairReportOut(**asdict(report))


@router.post("/items/{node_id}/{item_id}")
def repair_item(node_id: int, item_id: int, autorepair: bool = True, repair: bool = True):
    report = container.repairer.check_item(container.context(node_id), item_id,
                                           autorepair=autorepair, repair=repair)
    ok = not report.has_error or report.repaired
    return envelope_response(ok, report.as_text())


@router.post("/items/{node_id}/{item_id}/promote")
def promote_item(node_id: int, item_id: int):
    gid = container.repairer.promote_to_root(container.context(node_id), item_id)
    return envelope_response(True, f"item is now the root {gid}")


@router.get("/nodes/{node_id}", response_model=list[RepairReportOut])
def scan_node(node_id: int):
    reports = container.repairer.scan_node(container.context(node_id))
    return [RepairReportOut(**asdict(r)) for r in reports]
