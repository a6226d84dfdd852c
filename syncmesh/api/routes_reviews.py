"""Routes de la revue des modifications (consultation, approbation, refus, annulation)."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from syncmesh.api.envelope import envelope_response
from syncmesh.api.schemas import ReviewAction
from syncmesh.core.container import container
from syncmesh.domain.entities import ReviewRecord

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/items/{node_id}/{item_id}", response_model=ReviewRecord)
def get_active_review(node_id: int, item_id: int):
    record = container.review_gate.get_active(container.context(node_id), item_id)
    if record is None:
        raise HTTPException(status_code=404, detail="No active review for this item")
    return record


@router.get("/items/{node_id}/{item_id}/history", response_model=list[ReviewRecord])
def review_history(node_id: int, item_id: int):
    return container.review_repo.list_for_item(node_id, item_id)


@router.post("/{review_id}/approve")
def approve(review_id: int, payload: ReviewAction):
    result = container.review_gate.approve(review_id, reviewer=payload.reviewer,
                                           message=payload.message)
    return envelope_response(result.ok, result.message)


@router.post("/{review_id}/deny")
def deny(review_id: int, payload: ReviewAction):
    if not payload.message:
        return envelope_response(False, "a message is required to deny a review")
    result = container.review_gate.deny(review_id, payload.message, reviewer=payload.reviewer)
    return envelope_response(result.ok, result.message)


@router.post("/{review_id}/revert")
def revert(review_id: int, payload: ReviewAction):
    result = container.review_gate.revert(review_id, payload.message, reviewer=payload.reviewer)
    return envelope_response(result.ok, result.message)


@router.post("/{review_id}/comments")
def comment(review_id: int, payload: ReviewAction):
    result = container.review_gate.comment(review_id, payload.message, author=payload.reviewer)
    return envelope_response(result.ok, result.message)
