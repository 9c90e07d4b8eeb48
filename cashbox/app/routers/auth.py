from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional

from ..accounts import create_account, open_session
from ..db import Database
from ..deps import get_db, unwrap

router = APIRouter(prefix="/auth", tags=["auth"])


class SignupIn(BaseModel):
    name: str
    email: str
    password: str
    storeName: Optional[str] = None


class LoginIn(BaseModel):
    email: str
    password: str


@router.post("/signup")
def signup(data: SignupIn, db: Database = Depends(get_db)):
    account = unwrap(create_account(db, data.name, data.email, data.password, data.storeName))
    return JSONResponse(
        status_code=201,
        content={
            "id": account.id,
            "name": account.name,
            "email": account.email,
            # Shown once; used later for account recovery.
            "superkey": account.superkey,
            "createdAt": account.created_at.isoformat(),
        },
    )


@router.post("/login")
def login(data: LoginIn, db: Database = Depends(get_db)):
    issued = unwrap(open_session(db, data.email, data.password))
    return {
        "token": issued.token,
        "userId": issued.user_id,
        "expiresAt": issued.expires_at.isoformat(),
    }
