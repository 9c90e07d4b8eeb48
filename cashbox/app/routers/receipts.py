from fastapi import APIRouter, Body, Depends, HTTPException

from ..db import Database
from ..deps import get_db, get_owner_id, unwrap
from ..identity import OwnerId
from ..ledger import create_receipt
from ..projections import get_receipt, list_receipts, next_receipt_number

router = APIRouter(prefix="/receipts", tags=["receipts"])


@router.post("")
def create_receipt_endpoint(
    payload: dict = Body(...),
    owner_id: OwnerId = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    created = unwrap(create_receipt(db, payload, owner_id))
    return {
        "success": True,
        "receiptId": created.receipt_id,
        "message": "Receipt created successfully",
    }


@router.get("")
def list_receipts_endpoint(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return list_receipts(db, owner_id)


@router.get("/next-number")
def next_receipt_number_endpoint(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return {"receiptNumber": unwrap(next_receipt_number(db, owner_id))}


@router.get("/{receipt_id}")
def get_receipt_endpoint(receipt_id: str, owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    if not receipt_id.isdigit():
        raise HTTPException(status_code=400, detail="Invalid receipt ID format")
    receipt = get_receipt(db, owner_id, int(receipt_id))
    if receipt is None:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt
