import secrets
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.core.config import CONNECT_STATE_TTL_SECONDS
from app.core.state_store import TTLStore
from app.db.session import get_db
from app.scans.errors import CredentialError, ProviderError
from app.scans.routes import _iso
from app.social import sync
from app.social.models import SocialAccount
from app.users.models import User

router = APIRouter(prefix="/social", tags=["social"])

connect_states = TTLStore("connect:state", CONNECT_STATE_TTL_SECONDS)


class StateBody(BaseModel):
    provider: Literal["facebook", "instagram"]


class ConnectBody(BaseModel):
    state: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


def _serialize(a: SocialAccount) -> dict:
    return {
        "id": a.id,
        "provider": a.provider,
        "username": a.username,
        "profile_url": a.profile_url,
        "is_active": a.is_active,
        "last_synced_at": _iso(a.last_synced_at),
        "created_at": _iso(a.created_at),
    }


def _owned_account(db: Session, account_id: int, user: User) -> SocialAccount:
    a = (
        db.query(SocialAccount)
        .filter(SocialAccount.id == account_id, SocialAccount.user_id == user.id)
        .first()
    )
    if not a:
        raise HTTPException(status_code=404, detail="Social account not found")
    return a


@router.get("/accounts")
def list_accounts(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    accounts = (
        db.query(SocialAccount)
        .filter(SocialAccount.user_id == user.id)
        .order_by(SocialAccount.id.asc())
        .all()
    )
    items = [_serialize(a) for a in accounts]
    return {"value": items, "count": len(items)}


@router.post("/connect/state")
def issue_connect_state(body: StateBody, user: User = Depends(get_current_user)):
    state = secrets.token_urlsafe(32)
    connect_states.set(state, {"user_id": user.id, "provider": body.provider})
    return {"state": state, "expires_in": CONNECT_STATE_TTL_SECONDS}


@router.post("/connect", status_code=201)
def connect(body: ConnectBody, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    data = connect_states.get_and_delete(body.state)
    if not data or data.get("user_id") != user.id:
        raise HTTPException(status_code=400, detail="Invalid or expired state")

    try:
        account = sync.connect_account(
            db,
            user_id=user.id,
            provider=data["provider"],
            access_token=body.access_token,
            refresh_token=body.refresh_token,
            expires_in=body.expires_in,
        )
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"account": _serialize(account)}


@router.post("/accounts/{account_id}/sync")
def sync_account(account_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _owned_account(db, account_id, user)
    try:
        result = sync.sync_account(db, a.id)
    except CredentialError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return result


@router.delete("/accounts/{account_id}")
def disconnect(account_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    a = _owned_account(db, account_id, user)
    a.is_active = False
    db.commit()
    db.refresh(a)
    return {"account": _serialize(a)}
