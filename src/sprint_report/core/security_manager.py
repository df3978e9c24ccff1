"""Security manager for credential encryption and keyring storage."""

import base64
import secrets
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import PasswordDeleteError
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..utils.exceptions import SecurityError
from ..utils.logging_config import get_security_logger

DEFAULT_APP_DIR = Path.home() / ".sprint_report"


class SecurityManager:
    """Reversible local encryption for the remembered Jira secret.

    The master key lives in the OS keyring; the encrypted secret is stored
    in the keyring as well, under ``service:username``.
    """

    def __init__(
        self,
        master_password: Optional[str] = None,
        app_dir: Optional[Path] = None,
        keyring_service: str = "sprint-report",
    ):
        self.security_logger = get_security_logger()
        self._master_password = master_password
        self._app_dir = app_dir or DEFAULT_APP_DIR
        self._cipher_suite: Optional[Fernet] = None
        self._keyring_service = keyring_service
        self._initialize_encryption()

    def _initialize_encryption(self) -> None:
        """Initialize encryption system."""
        try:
            master_key = self._get_or_create_master_key()

            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=self._get_salt(),
                iterations=100000,
            )
            key = base64.urlsafe_b64encode(kdf.derive(master_key))
            self._cipher_suite = Fernet(key)

            self.security_logger.credential("encryption_ready")

        except Exception as e:
            self.security_logger.credential("encryption_ready", success=False, error=str(e))
            raise SecurityError(f"Failed to initialize encryption: {e}")

    def _get_or_create_master_key(self) -> bytes:
        """Get or create master encryption key."""
        try:
            stored_key = keyring.get_password(self._keyring_service, "master_key")

            if stored_key:
                return base64.b64decode(stored_key)

            master_key = secrets.token_bytes(32)
            encoded_key = base64.b64encode(master_key).decode()
            keyring.set_password(self._keyring_service, "master_key", encoded_key)

            self.security_logger.credential("master_key_created")

            return master_key

        except Exception as e:
            # Fallback to password-based key if keyring fails
            if self._master_password:
                return self._master_password.encode()
            raise SecurityError(f"Failed to manage master key: {e}")

    def _get_salt(self) -> bytes:
        """Get or create salt for key derivation."""
        salt_path = self._app_dir / "salt"

        if salt_path.exists():
            return salt_path.read_bytes()

        salt = secrets.token_bytes(32)
        salt_path.parent.mkdir(parents=True, exist_ok=True)
        salt_path.write_bytes(salt)
        salt_path.chmod(0o600)

        return salt

    def encrypt_credential(self, credential: str) -> str:
        """Encrypt credential string."""
        if not self._cipher_suite:
            raise SecurityError("Encryption not initialized")

        if not credential:
            return ""

        encrypted_bytes = self._cipher_suite.encrypt(credential.encode("utf-8"))
        return base64.b64encode(encrypted_bytes).decode()

    def decrypt_credential(self, encrypted_credential: str) -> str:
        """Decrypt credential string."""
        if not self._cipher_suite:
            raise SecurityError("Encryption not initialized")

        if not encrypted_credential:
            return ""

        try:
            encrypted_bytes = base64.b64decode(encrypted_credential)
            return self._cipher_suite.decrypt(encrypted_bytes).decode("utf-8")

        except (InvalidToken, ValueError) as e:
            self.security_logger.credential("decrypt", success=False, error=type(e).__name__)
            raise SecurityError(f"Failed to decrypt credential: {e}")

    def store_credential(self, service: str, username: str, credential: str) -> None:
        """Store encrypted credential in keyring."""
        try:
            encrypted_credential = self.encrypt_credential(credential)
            keyring.set_password(
                self._keyring_service, f"{service}:{username}", encrypted_credential
            )

            self.security_logger.credential("stored", username=username)

        except Exception as e:
            self.security_logger.credential(
                "stored", username=username, success=False, error=str(e)
            )
            raise SecurityError(f"Failed to store credential: {e}")

    def retrieve_credential(self, service: str, username: str) -> Optional[str]:
        """Retrieve and decrypt credential from keyring."""
        try:
            encrypted_credential = keyring.get_password(
                self._keyring_service, f"{service}:{username}"
            )

            if not encrypted_credential:
                return None

            return self.decrypt_credential(encrypted_credential)

        except Exception as e:
            self.security_logger.credential(
                "retrieved", username=username, success=False, error=str(e)
            )
            raise SecurityError(f"Failed to retrieve credential: {e}")

    def delete_credential(self, service: str, username: str) -> None:
        """Delete credential from keyring."""
        try:
            keyring.delete_password(self._keyring_service, f"{service}:{username}")

            self.security_logger.credential("deleted", username=username)

        except PasswordDeleteError:
            # Nothing stored under this name
            pass
        except Exception as e:
            self.security_logger.credential(
                "deleted", username=username, success=False, error=str(e)
            )
            raise SecurityError(f"Failed to delete credential: {e}")

    def validate_integrity(self) -> bool:
        """Validate integrity of security system."""
        try:
            test_data = "test_credential_data"
            if self.decrypt_credential(self.encrypt_credential(test_data)) != test_data:
                raise SecurityError("Integrity check failed")

            self.security_logger.credential("integrity_check")
            return True

        except Exception as e:
            self.security_logger.credential("integrity_check", success=False, error=str(e))
            return False
