"""BrainCorpusState model: monotonic per-user index version."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from database import Base


class BrainCorpusState(Base):
    """Version counter bumped on every index mutation; keys analytics memoization."""

    __tablename__ = "brain_corpus_states"

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
