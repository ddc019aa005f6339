"""ContentVector model: one embedded fragment of a video plus its metrics snapshot."""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class ContentVector(Base):
    """Embedded hook/script/cta fragment. Replaced wholesale on reindex, never edited."""

    __tablename__ = "content_vectors"
    __table_args__ = (
        UniqueConstraint("user_id", "video_id", "content_type", name="uq_content_vectors_video_type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    video_id = Column(String, ForeignKey("videos.id"), nullable=False, index=True)
    content_type = Column(String, nullable=False, index=True)  # hook, script, cta
    section_tag = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    language = Column(String, nullable=True)
    embedding_json = Column(JSON, nullable=False)
    embedding_model = Column(String, nullable=True)

    video_title = Column(String, nullable=True)
    video_theme = Column(String, nullable=True, index=True)
    cta_type = Column(String, nullable=True)
    editing_style = Column(String, nullable=True)
    tone_style = Column(String, nullable=True)

    retention_pct = Column(Float, nullable=True)
    saves_per_1k = Column(Float, nullable=True)
    follows_per_1k = Column(Float, nullable=True)
    for_you_pct = Column(Float, nullable=True)
    views = Column(Integer, nullable=True, index=True)
    likes = Column(Integer, nullable=True)
    comments = Column(Integer, nullable=True)
    shares = Column(Integer, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    published_date = Column(DateTime(timezone=True), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
