from .encryption import SessionCipher
from .models import ExtractionResult, Session
from .session_extractor import BrowserHandle, SessionExtractor
from .session_store import SessionStore

__all__ = [
    "BrowserHandle",
    "ExtractionResult",
    "Session",
    "SessionCipher",
    "SessionExtractor",
    "SessionStore",
]
