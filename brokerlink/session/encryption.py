"""Symmetric encryption for the session blob."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SessionCipher:
    """Fernet cipher for the session file.

    The key comes from configuration when provided; otherwise a per-install key
    is generated on first use and stored next to the session file with mode
    0600.
    """

    def __init__(self, key: Optional[Union[str, bytes]] = None, key_path: Optional[Union[str, Path]] = None):
        """
        Initialize the cipher.

        Args:
            key: Explicit Fernet key (urlsafe base64, 32 bytes)
            key_path: File that holds (or will hold) the per-install key

        Raises:
            ValueError: If neither a key nor a key path is supplied, or the key is malformed
        """
        if key is None and key_path is None:
            raise ValueError("Either key or key_path must be provided")

        if key is not None:
            raw_key = key.encode() if isinstance(key, str) else key
        else:
            raw_key = self._load_or_create_key(Path(key_path).expanduser())

        try:
            self._fernet = Fernet(raw_key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid session encryption key: {e}") from e

    @staticmethod
    def _load_or_create_key(path: Path) -> bytes:
        if path.exists():
            key = path.read_bytes().strip()
            if key:
                return key
            logger.warning(f"Session key file {path} is empty, generating a new key")

        key = Fernet.generate_key()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        os.chmod(path, 0o600)
        logger.info(f"Generated new session encryption key at {path}")
        return key

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt a UTF-8 string."""
        return self._fernet.encrypt(plaintext.encode("utf-8"))

    def decrypt(self, token: bytes) -> str:
        """
        Decrypt a blob produced by ``encrypt``.

        Raises:
            ValueError: If the blob is corrupted or was encrypted with another key
        """
        try:
            return self._fernet.decrypt(token).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as e:
            raise ValueError("Session blob could not be decrypted") from e
