"""
Field Encryption

Opaque encrypt/decrypt capability keyed by data category. Each category gets
its own Fernet key derived from the master key with HKDF, so a handle minted
for one category cannot be opened with another category's key.

Handle format: ``<version>:<category>:<fernet token>``
"""

import base64
from enum import Enum

import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from beacon.config import EncryptionSettings, get_settings
from beacon.errors import EncryptionError

logger = structlog.get_logger(__name__)


class DataCategory(str, Enum):
    """Closed set of encryption categories."""
    PHI = "phi"
    PII = "pii"
    AUDIT = "audit"
    CONSENT = "consent"


class FieldEncryptor:
    """
    Category-keyed field encryption.

    Usage:
        encryptor = FieldEncryptor.from_settings()
        handle = encryptor.encrypt("signature-bytes", DataCategory.CONSENT)
        encryptor.decrypt(handle)
    """

    def __init__(self, master_key: str, version: str = "v1"):
        if not master_key:
            raise EncryptionError("Master key is required")
        self._master = master_key.encode()
        self._version = version
        self._fernets: dict[DataCategory, Fernet] = {}

    @classmethod
    def from_settings(cls, settings: EncryptionSettings | None = None) -> "FieldEncryptor":
        settings = settings or get_settings().encryption
        return cls(settings.master_key.get_secret_value(), settings.key_version)

    def _fernet(self, category: DataCategory) -> Fernet:
        if category not in self._fernets:
            hkdf = HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=f"beacon:{self._version}:{category.value}".encode(),
            )
            key = base64.urlsafe_b64encode(hkdf.derive(self._master))
            self._fernets[category] = Fernet(key)
        return self._fernets[category]

    def encrypt(self, plaintext: str, category: DataCategory) -> str:
        """Encrypt ``plaintext`` and return an opaque handle."""
        if not plaintext:
            raise EncryptionError("Data to encrypt cannot be empty")
        category = DataCategory(category)
        token = self._fernet(category).encrypt(plaintext.encode()).decode()
        return f"{self._version}:{category.value}:{token}"

    def decrypt(self, handle: str) -> str:
        """Decrypt a handle produced by :meth:`encrypt`."""
        if not handle:
            raise EncryptionError("Encrypted data cannot be empty")
        try:
            version, category, token = handle.split(":", 2)
            category = DataCategory(category)
        except ValueError as e:
            raise EncryptionError("Malformed ciphertext handle") from e
        if version != self._version:
            raise EncryptionError(f"Unsupported key version: {version}")
        try:
            return self._fernet(category).decrypt(token.encode()).decode()
        except InvalidToken as e:
            logger.warning("Decryption failed", category=category.value)
            raise EncryptionError(f"Failed to decrypt {category.value} data") from e
