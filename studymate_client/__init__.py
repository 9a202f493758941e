__all__ = [
    "StudyMate",
    "StudyMateClient",
    "SessionState",
    "read_text_stream",
]

from .api.client import StudyMateClient
from .api.sse import read_text_stream
from .entrypoint import StudyMate
from .session import SessionState
