from fastapi import APIRouter, Body, Depends

from ..db import Database
from ..deps import get_db, get_owner_id, unwrap
from ..identity import OwnerId
from ..projections import list_due, list_notifications
from ..settlement import settle_due

router = APIRouter(tags=["due"])


@router.get("/due")
def list_due_endpoint(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return list_due(db, owner_id)


@router.put("/due")
def settle_due_endpoint(
    payload: dict = Body(...),
    owner_id: OwnerId = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    unwrap(settle_due(db, payload.get("id"), owner_id))
    return {"success": True, "message": "Payment processed successfully"}


@router.get("/notifications")
def list_notifications_endpoint(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return list_notifications(db, owner_id)
