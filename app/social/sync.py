from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.core.config import SOCIAL_TOKEN_TTL_DAYS
from app.social.client import GraphClient
from app.social.credentials import usable_credential
from app.social.models import OAuthToken, SocialAccount, SocialMediaItem

logger = logging.getLogger(__name__)


def sync_account(db: Session, account_id: int, client: GraphClient | None = None) -> dict:
    """
    Pull the account's photos from the provider into social_media_items.
    Existing rows (same provider media id) are refreshed, not duplicated.
    """
    account = db.query(SocialAccount).filter(SocialAccount.id == account_id).first()
    if not account:
        raise LookupError(f"social account {account_id} not found")

    access_token = usable_credential(db, account)
    client = client or GraphClient()

    media = client.list_media(account.provider, account.provider_account_id, access_token)

    created = 0
    updated = 0
    for m in media:
        item = (
            db.query(SocialMediaItem)
            .filter(
                SocialMediaItem.provider == account.provider,
                SocialMediaItem.provider_media_id == m.provider_media_id,
            )
            .first()
        )
        fields = dict(
            social_account_id=account.id,
            media_type=m.media_type,
            media_url=m.media_url,
            thumbnail_url=m.thumbnail_url,
            permalink_url=m.permalink_url,
            caption=m.caption,
            is_user_owned=m.is_user_owned,
            is_tagged=m.is_tagged,
            posted_at=m.posted_at,
            extra=m.extra or None,
        )
        if item:
            for k, v in fields.items():
                setattr(item, k, v)
            updated += 1
        else:
            db.add(SocialMediaItem(provider=account.provider, provider_media_id=m.provider_media_id, **fields))
            created += 1

    account.last_synced_at = datetime.now(timezone.utc)
    db.commit()

    logger.info(
        f"Synced social account {account.id} ({account.provider}): {created} new, {updated} refreshed",
        extra={"account_id": account.id},
    )
    return {"account_id": account.id, "created": created, "updated": updated, "total": len(media)}


def connect_account(
    db: Session,
    *,
    user_id: int,
    provider: str,
    access_token: str,
    refresh_token: str | None = None,
    expires_in: int | None = None,
    client: GraphClient | None = None,
) -> SocialAccount:
    """
    Store a ready-to-use credential for the provider account behind it.
    Reconnecting an account already known moves it to this user and reactivates it.
    """
    client = client or GraphClient()
    profile = client.get_profile(provider, access_token)

    account = (
        db.query(SocialAccount)
        .filter(
            SocialAccount.provider == provider,
            SocialAccount.provider_account_id == profile.provider_account_id,
        )
        .first()
    )
    if account:
        account.user_id = user_id
        account.username = profile.username
        account.profile_url = profile.profile_url
        account.is_active = True
        account.last_synced_at = None
    else:
        account = SocialAccount(
            user_id=user_id,
            provider=provider,
            provider_account_id=profile.provider_account_id,
            username=profile.username,
            profile_url=profile.profile_url,
            is_active=True,
        )
        db.add(account)
    db.flush()

    now = datetime.now(timezone.utc)
    expires_at = now + (timedelta(seconds=expires_in) if expires_in else timedelta(days=SOCIAL_TOKEN_TTL_DAYS))

    token = db.query(OAuthToken).filter(OAuthToken.social_account_id == account.id).first()
    if token:
        token.access_token = access_token
        token.refresh_token = refresh_token
        token.expires_at = expires_at
        token.revoked_at = None
    else:
        db.add(
            OAuthToken(
                social_account_id=account.id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
        )

    db.commit()
    db.refresh(account)
    return account
