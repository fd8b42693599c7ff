from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Text, JSON, UniqueConstraint,
)
from sqlalchemy.sql import func
from app.db.base import Base

PROVIDERS = ("facebook", "instagram")


class SocialAccount(Base):
    __tablename__ = "social_accounts"
    __table_args__ = (UniqueConstraint("provider", "provider_account_id"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    provider = Column(String, nullable=False)  # facebook | instagram
    provider_account_id = Column(String, nullable=False)
    username = Column(String, nullable=True)
    profile_url = Column(String, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class OAuthToken(Base):
    __tablename__ = "oauth_tokens"

    id = Column(Integer, primary_key=True)
    social_account_id = Column(
        Integer, ForeignKey("social_accounts.id"), unique=True, index=True, nullable=False
    )

    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SocialMediaItem(Base):
    __tablename__ = "social_media_items"
    __table_args__ = (UniqueConstraint("provider", "provider_media_id"),)

    id = Column(Integer, primary_key=True)
    social_account_id = Column(Integer, ForeignKey("social_accounts.id"), index=True, nullable=False)

    provider = Column(String, nullable=False)
    provider_media_id = Column(String, nullable=False)
    media_type = Column(String, nullable=False)  # photo | video | album

    media_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    permalink_url = Column(Text, nullable=True)
    caption = Column(Text, nullable=True)

    is_user_owned = Column(Boolean, default=False)
    is_tagged = Column(Boolean, default=False)
    posted_at = Column(DateTime(timezone=True), nullable=True)

    extra = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
