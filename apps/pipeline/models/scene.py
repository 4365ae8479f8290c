"""Scene model: one ordinal segment of a project's video."""

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Scene(Base):
    """Scene row; at most one per (project_id, scene_number)."""

    __tablename__ = "scenes"
    __table_args__ = (
        UniqueConstraint("project_id", "scene_number", name="uq_scenes_project_scene"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    scene_number = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    duration = Column(Float, nullable=False)
    start_time = Column(Float, nullable=False, default=0.0)
    video_url = Column(Text, nullable=True)
    first_frame_url = Column(Text, nullable=True)
    last_frame_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="scenes")
