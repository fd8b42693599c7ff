from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.scans.errors import CredentialError
from app.social.models import OAuthToken, SocialAccount


def _as_utc(dt):
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def usable_credential(db: Session, account: SocialAccount) -> str:
    """
    The account's access token, or CredentialError when the account is
    inactive or its token is missing, revoked or expired.
    """
    if not account.is_active:
        raise CredentialError(f"social account {account.id} is disconnected")

    token = db.query(OAuthToken).filter(OAuthToken.social_account_id == account.id).first()
    if not token or not token.access_token:
        raise CredentialError(f"social account {account.id} has no access token")
    if token.revoked_at is not None:
        raise CredentialError(f"access token for social account {account.id} was revoked")

    expires = _as_utc(token.expires_at)
    if expires is not None and expires <= datetime.now(timezone.utc):
        raise CredentialError(f"access token for social account {account.id} expired at {expires.isoformat()}")

    return token.access_token
