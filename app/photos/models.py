from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from app.db.base import Base

class ReferencePhoto(Base):
    __tablename__ = "reference_photos"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    # face id assigned by the face matcher when the photo was indexed
    face_id = Column(String, index=True, nullable=True)
    file_name = Column(String, nullable=True)

    # inactive photos are kept for history but never used in scans
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
