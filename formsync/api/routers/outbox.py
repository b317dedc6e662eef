from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from formsync.api.deps import get_outbox, get_owner
from formsync.core.errors import FormLocked, MutationInFlight, StorageFailure
from formsync.outbox.service import OutboxService
from formsync.schemas.mutation import MutationRequest

router = APIRouter()

STORAGE_AT_RISK = "saved locally may be at risk"


@router.post("/send")
def queue_or_send(payload: dict, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        req = MutationRequest.model_validate({**(payload or {}), "owner_id": owner_id})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    try:
        res = outbox.queue_or_send(req)
    except FormLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail={"code": "STORAGE_FAILURE", "message": STORAGE_AT_RISK, "reason": str(e)})
    return res.as_dict()


@router.get("")
def list_outbox(owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        items = outbox.list_outbox(owner_id)
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail={"code": "STORAGE_FAILURE", "reason": str(e)})
    return {"items": [m.summary() for m in items]}


@router.post("/sync")
def sync_now(owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        report = outbox.sync_now(owner_id)
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail={"code": "STORAGE_FAILURE", "reason": str(e)})
    return report.as_dict()


@router.delete("/{mutation_id}")
def delete_queued(mutation_id: int, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        deleted = outbox.delete_queued(mutation_id, owner_id=owner_id)
    except MutationInFlight as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Queued mutation not found")
    return {"ok": True, "id": mutation_id}


@router.get("/events")
def list_events(limit: int = 50, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    return {"items": outbox.recent_events(owner_id=owner_id, limit=max(1, min(limit, 200)))}
