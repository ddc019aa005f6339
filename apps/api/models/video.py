"""Video model for the creator's raw short-form catalog."""

from sqlalchemy import Boolean, Column, String, DateTime, Float, ForeignKey, Integer, JSON, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Video(Base):
    """Published short-form video with its lifetime performance counters."""
    
    __tablename__ = "videos"
    
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=True)
    hook = Column(Text, nullable=True)
    script = Column(Text, nullable=True)
    cta_text = Column(Text, nullable=True)
    views = Column(Integer, default=0)
    likes = Column(Integer, default=0)
    comments = Column(Integer, default=0)
    shares = Column(Integer, default=0)
    saves = Column(Integer, default=0)
    new_followers = Column(Integer, default=0)
    avg_time_watched = Column(Float, nullable=True)  # seconds
    duration_seconds = Column(Float, nullable=True)
    traffic_sources_json = Column(JSON, nullable=True)  # {"for_you": 1200, "search": 80, ...}
    published_date = Column(DateTime(timezone=True), nullable=True, index=True)
    video_theme = Column(String, nullable=True)
    cta_type = Column(String, nullable=True)
    editing_style = Column(String, nullable=True)
    tone_style = Column(String, nullable=True)
    is_viral_flagged = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    
    # Relationships
    user = relationship("User", back_populates="videos")
