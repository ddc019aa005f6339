"""IdeaOutcome model for recorded content-idea results."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class IdeaOutcome(Base):
    """Outcome of a published content idea; wins feed the weight nudge."""

    __tablename__ = "idea_outcomes"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    idea_id = Column(String, nullable=False, index=True)
    idea_text = Column(Text, nullable=True)
    idea_type = Column(String, nullable=True)  # hook, script, cta
    idea_mode = Column(String, nullable=True)  # exploit, explore
    published_video_id = Column(String, nullable=True, index=True)
    expected_metrics_json = Column(JSON, nullable=True)
    actual_metrics_json = Column(JSON, nullable=True)
    outcome = Column(String, nullable=False)  # win, loss, neutral
    feedback_notes = Column(Text, nullable=True)
    weights_before_json = Column(JSON, nullable=True)
    weights_after_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="idea_outcomes")
