from typing import Optional, TypeVar, Union

from fastapi import Depends, Header, HTTPException, Request

from .accounts import resolve_owner
from .db import Database
from .errors import LedgerError, Ok
from .identity import OwnerId, parse_bearer

T = TypeVar("T")


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_owner_id(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> OwnerId:
    token = parse_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    owner_id = resolve_owner(db, token)
    if owner_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return owner_id


def unwrap(result: Union[Ok[T], LedgerError]) -> T:
    # Route boundary: turn the error arm into the matching HTTP status.
    if isinstance(result, LedgerError):
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result.value
