from fastapi import APIRouter, Body, Depends

from ..accounts import Profile, get_profile, update_profile
from ..db import Database
from ..deps import get_db, get_owner_id, unwrap
from ..identity import OwnerId

router = APIRouter(prefix="/profile", tags=["profile"])


def _profile_out(p: Profile) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "email": p.email,
        "createdAt": p.created_at,
        "storeName": p.store_name,
        "storeAddress": p.store_address,
        "storeContact": p.store_contact,
        "storeCountryCode": p.store_country_code,
        "isProfileComplete": p.is_complete,
    }


@router.get("")
def get_profile_endpoint(owner_id: OwnerId = Depends(get_owner_id), db: Database = Depends(get_db)):
    return _profile_out(unwrap(get_profile(db, owner_id)))


@router.put("")
def update_profile_endpoint(
    payload: dict = Body(...),
    owner_id: OwnerId = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    profile = unwrap(update_profile(db, owner_id, payload))
    return {
        "success": True,
        "updatedProfile": _profile_out(profile),
        "isProfileComplete": profile.is_complete,
    }
