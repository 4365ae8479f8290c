"""Project model for generated videos."""

from sqlalchemy import Column, String, DateTime, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


PROJECT_STATUSES = ("draft", "generating", "completed", "failed")


class Project(Base):
    """A user's video project; config caches derived asset URLs."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="draft", index=True)
    config = Column(JSON, nullable=True, default=dict)
    final_video_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    scenes = relationship("Scene", back_populates="project", cascade="all, delete-orphan")
