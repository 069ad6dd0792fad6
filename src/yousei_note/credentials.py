"""Encrypted storage for the Google Drive OAuth token."""

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
import keyring

logger = logging.getLogger(__name__)


class TokenStore:
    """Keeps token data in a Fernet-encrypted file, key held in the system keyring."""

    SERVICE_NAME = "yousei-note"
    KEY_NAME = "token_encryption_key"

    def __init__(self, token_path: Path):
        """Initialize token store.

        Args:
            token_path: Path of the encrypted token file
        """
        self.token_path = token_path

    def _get_encryption_key(self) -> bytes:
        """Get or create encryption key from system keyring."""
        key_str = keyring.get_password(self.SERVICE_NAME, self.KEY_NAME)
        if key_str:
            return base64.b64decode(key_str.encode())

        key = Fernet.generate_key()
        keyring.set_password(self.SERVICE_NAME, self.KEY_NAME, base64.b64encode(key).decode())
        logger.info("Generated new encryption key")
        return key

    def _encrypt_token(self, token_data: Dict[str, Any]) -> bytes:
        fernet = Fernet(self._get_encryption_key())
        return fernet.encrypt(json.dumps(token_data).encode())

    def _decrypt_token(self, encrypted_data: bytes) -> Dict[str, Any]:
        """Decrypt token data.

        Raises:
            ValueError: If decryption fails
        """
        try:
            fernet = Fernet(self._get_encryption_key())
            return json.loads(fernet.decrypt(encrypted_data).decode())
        except InvalidToken:
            raise ValueError("Invalid or corrupted token data")
        except (TypeError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValueError(f"Decryption failed: {e}")

    def save_token(self, token_data: Dict[str, Any]) -> None:
        """Save encrypted authentication token."""
        self.token_path.parent.mkdir(parents=True, exist_ok=True)
        self.token_path.write_bytes(self._encrypt_token(token_data))

        # Secure file permissions (owner read/write only)
        self.token_path.chmod(0o600)
        logger.info("Token saved with encryption")

    def load_token(self) -> Optional[Dict[str, Any]]:
        """Load and decrypt the authentication token.

        Returns:
            Token data or None if not found or unreadable
        """
        if not self.token_path.exists():
            return None

        try:
            token_data = self._decrypt_token(self.token_path.read_bytes())
        except ValueError as e:
            logger.warning(f"Could not decrypt token: {e}")
            logger.warning("Token file is unreadable - please re-authenticate")
            self.token_path.unlink(missing_ok=True)
            return None

        logger.debug("Token loaded and decrypted successfully")
        return token_data

    def clear(self) -> None:
        """Delete the stored token."""
        self.token_path.unlink(missing_ok=True)
