"""Encrypted, file-backed storage of one session per provider."""

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from ..broker.models import Provider
from .encryption import SessionCipher
from .models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """Keeps the provider -> Session mapping in memory and encrypted on disk.

    Every mutation re-encrypts and rewrites the whole mapping. Storage failures
    are logged and never raised: a missing or corrupted blob simply means there
    are no sessions.
    """

    def __init__(
        self,
        path: Union[str, Path],
        cipher: SessionCipher,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the store.

        Args:
            path: Location of the encrypted session file
            cipher: Cipher used for the file contents
            clock: Returns the current time in epoch seconds
        """
        self.path = Path(path).expanduser()
        self.cipher = cipher
        self.clock = clock
        self._sessions: Dict[Provider, Session] = {}

    def load(self) -> Dict[Provider, Session]:
        """
        Read the blob from disk, dropping expired and malformed entries.

        Returns:
            Mapping of provider to active Session
        """
        self._sessions = {}
        if not self.path.exists():
            return {}

        try:
            blob = self.path.read_bytes()
            data = json.loads(self.cipher.decrypt(blob))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read session store at {self.path}, treating as empty: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning("Session store has unexpected shape, treating as empty")
            return {}

        now = self.clock()
        for key, entry in data.items():
            try:
                session = Session.from_dict(entry)
            except ValueError as e:
                logger.warning(f"Skipping malformed session entry '{key}': {e}")
                continue
            if not session.is_active(now):
                logger.debug(f"Dropping expired {session.provider} session")
                continue
            self._sessions[session.provider] = session

        logger.info(f"Loaded {len(self._sessions)} active session(s)")
        return dict(self._sessions)

    def save(self) -> bool:
        """
        Encrypt and write the in-memory mapping.

        Returns:
            True if the file was written
        """
        payload = {provider.value: session.to_dict() for provider, session in self._sessions.items()}
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(self.cipher.encrypt(json.dumps(payload)))
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to save session store to {self.path}: {e}")
            return False

    def get(self, provider: Union[str, Provider]) -> Optional[Session]:
        """Return the provider's session if present and unexpired."""
        session = self._sessions.get(Provider.parse(provider))
        if session is not None and session.is_active(self.clock()):
            return session
        return None

    def peek(self, provider: Union[str, Provider]) -> Optional[Session]:
        """Return the stored session regardless of expiry."""
        return self._sessions.get(Provider.parse(provider))

    def put(self, session: Session) -> None:
        """Store or replace a session and persist."""
        self._sessions[session.provider] = session
        self.save()

    def clear(self, provider: Union[str, Provider]) -> None:
        """Remove a provider's session and persist."""
        if self._sessions.pop(Provider.parse(provider), None) is not None:
            logger.info(f"Cleared {Provider.parse(provider)} session")
        self.save()

    def clear_all(self) -> None:
        """Remove every session and delete the blob."""
        self._sessions = {}
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete session store {self.path}: {e}")
        logger.info("Cleared all sessions")

    def active_providers(self) -> List[Provider]:
        """Providers whose session is currently active, in insertion order."""
        now = self.clock()
        return [provider for provider, session in self._sessions.items() if session.is_active(now)]
