"""Models package."""

from .user import User
from .video import Video
from .content_vector import ContentVector
from .brain_corpus_state import BrainCorpusState
from .account_context import AccountContext
from .idea_outcome import IdeaOutcome
