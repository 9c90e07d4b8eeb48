from fastapi import APIRouter, Depends

from ..db import Database
from ..deps import get_db, get_owner_id
from ..identity import OwnerId
from ..projections import account_summary

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("")
def list_transactions(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return account_summary(db, owner_id)
