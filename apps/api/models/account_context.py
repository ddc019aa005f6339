"""AccountContext model for per-user strategy and scoring weights."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class AccountContext(Base):
    """Creator mission, strategic themes and metric weights used by ranking."""

    __tablename__ = "account_contexts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True, index=True)
    mission = Column(Text, nullable=True)
    brand_pillars_json = Column(JSON, nullable=True)
    positioning = Column(Text, nullable=True)
    tone_guide = Column(Text, nullable=True)
    content_themes_json = Column(JSON, nullable=True)
    north_star_metric = Column(String, nullable=True)
    strategic_bets_json = Column(JSON, nullable=True)
    do_not_do_json = Column(JSON, nullable=True)
    negative_keywords_json = Column(JSON, nullable=True)
    weights_json = Column(JSON, nullable=False)  # {"retention": 0.3, "saves": 0.5, "follows": 0.2}
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="account_context")
