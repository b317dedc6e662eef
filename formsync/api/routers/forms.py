from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from formsync.api.deps import get_outbox, get_owner
from formsync.core.errors import ApplicationFailure, FormLocked, StorageFailure, UnknownForm
from formsync.forms.service import lock_status, refresh_lock, save_form, unlock_form
from formsync.outbox.service import OutboxService

router = APIRouter()


@router.get("")
def list_forms(outbox: OutboxService = Depends(get_outbox)) -> dict:
    items = []
    for key in outbox.catalog.keys():
        f = outbox.catalog.get(key)
        items.append({"key": f.key, "title": f.title, "save_path": f.save_path, "fields": sorted(f.defaults)})
    return {"items": items}


@router.get("/{form_key}/lock")
def get_lock(form_key: str, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        return lock_status(outbox, owner_id=owner_id, form_key=form_key)
    except UnknownForm as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{form_key}/refresh")
def refresh(form_key: str, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        return refresh_lock(outbox, owner_id=owner_id, form_key=form_key)
    except UnknownForm as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ApplicationFailure as e:
        raise HTTPException(status_code=502, detail={"code": "REMOTE_REJECTED", "status_code": e.status_code, "reason": e.detail})


@router.post("/{form_key}/unlock")
def unlock(form_key: str, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    try:
        return unlock_form(outbox, owner_id=owner_id, form_key=form_key)
    except UnknownForm as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{form_key}/save")
def save(form_key: str, payload: dict, owner_id: str = Depends(get_owner), outbox: OutboxService = Depends(get_outbox)) -> dict:
    payload = payload or {}
    try:
        res = save_form(
            outbox,
            owner_id=owner_id,
            form_key=form_key,
            values=payload.get("values") or {},
            school_id=payload.get("school_id"),
            version_token=payload.get("version_token"),
        )
    except UnknownForm as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FormLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageFailure as e:
        raise HTTPException(status_code=503, detail={"code": "STORAGE_FAILURE", "message": "saved locally may be at risk", "reason": str(e)})
    return res.as_dict()
