"""
Card Data Encryption at Rest Module

Field-level encryption for sensitive columns (full card numbers, emails),
transparent to the rest of the system. Encrypted columns cannot be searched,
so card lookups go through a keyed HMAC fingerprint instead of the number.
"""

import os
import base64
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.exceptions import InvalidTag

from .storage import StorageInterface

logger = logging.getLogger(__name__)


# Sensitive field definitions per table
SENSITIVE_FIELDS = {
    "accounts": ["card_number", "email"],
    "audit_events": [],  # Never encrypt audit trail
}

# Encryption marker prefix
ENCRYPTION_PREFIX = "ENC:"


class EncryptionProvider(ABC):
    """Abstract base class for encryption providers"""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        pass


class NoOpEncryptionProvider(EncryptionProvider):
    """Pass-through provider used when no master key is configured"""

    def __init__(self):
        logger.info("Using NoOpEncryptionProvider - card data will NOT be encrypted")

    def encrypt(self, plaintext: str) -> str:
        return str(plaintext)

    def decrypt(self, ciphertext: str) -> str:
        return str(ciphertext)


class FernetEncryptionProvider(EncryptionProvider):
    """Fernet encryption provider (AES-128-CBC + HMAC-SHA256)"""

    def __init__(self, master_key: str, salt: Optional[bytes] = None):
        self.salt = salt or b'payment_core_card_salt'

        # Derive Fernet key from master key using PBKDF2
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self.salt,
            iterations=100000,
        )
        derived_key = kdf.derive(master_key.encode('utf-8'))
        self.fernet = Fernet(base64.urlsafe_b64encode(derived_key))

    def encrypt(self, plaintext: str) -> str:
        token = self.fernet.encrypt(str(plaintext).encode('utf-8'))
        return f"{ENCRYPTION_PREFIX}{token.decode('ascii')}"

    def decrypt(self, ciphertext: str) -> str:
        if ciphertext.startswith(ENCRYPTION_PREFIX):
            ciphertext = ciphertext[len(ENCRYPTION_PREFIX):]
        try:
            return self.fernet.decrypt(ciphertext.encode('ascii')).decode('utf-8')
        except InvalidToken as e:
            raise ValueError("Failed to decrypt data") from e


class AESGCMEncryptionProvider(EncryptionProvider):
    """AES-256-GCM encryption provider (authenticated encryption)"""

    def __init__(self, master_key: Union[str, bytes]):
        if isinstance(master_key, str):
            master_key = master_key.encode('utf-8')
        self.aesgcm = AESGCM(hashlib.sha256(master_key).digest())

    def encrypt(self, plaintext: str) -> str:
        # Random 12-byte nonce prefixed to the ciphertext
        nonce = os.urandom(12)
        encrypted = self.aesgcm.encrypt(nonce, str(plaintext).encode('utf-8'), None)
        encoded = base64.urlsafe_b64encode(nonce + encrypted).decode('ascii')
        return f"{ENCRYPTION_PREFIX}{encoded}"

    def decrypt(self, ciphertext: str) -> str:
        if ciphertext.startswith(ENCRYPTION_PREFIX):
            ciphertext = ciphertext[len(ENCRYPTION_PREFIX):]
        combined = base64.urlsafe_b64decode(ciphertext.encode('ascii'))
        try:
            return self.aesgcm.decrypt(combined[:12], combined[12:], None).decode('utf-8')
        except InvalidTag as e:
            raise ValueError("Failed to decrypt data") from e


class EncryptedStorage(StorageInterface):
    """
    Storage wrapper that encrypts sensitive fields on save and decrypts on load.
    Wraps any StorageInterface implementation and shares its atomic scope.
    """

    def __init__(
        self,
        inner: StorageInterface,
        encryption_provider: EncryptionProvider,
        sensitive_fields: Optional[Dict[str, List[str]]] = None
    ):
        self.inner = inner
        self.provider = encryption_provider
        self.sensitive_fields = sensitive_fields or SENSITIVE_FIELDS

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self.inner.save(table, record_id, self._encrypt_fields(table, dict(data)))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        self.inner.insert(table, record_id, self._encrypt_fields(table, dict(data)))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        data = self.inner.load(table, record_id)
        if data:
            return self._decrypt_fields(table, data)
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return [self._decrypt_fields(table, data) for data in self.inner.load_all(table)]

    def delete(self, table: str, record_id: str) -> bool:
        return self.inner.delete(table, record_id)

    def exists(self, table: str, record_id: str) -> bool:
        return self.inner.exists(table, record_id)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Find records matching filters.

        Filters on encrypted fields are applied in memory after decryption;
        prefer filtering on fingerprints or other clear columns.
        """
        sensitive = self.sensitive_fields.get(table, [])
        clear_filters = {k: v for k, v in filters.items() if k not in sensitive}
        encrypted_filters = {k: v for k, v in filters.items() if k in sensitive}

        results = [self._decrypt_fields(table, data) for data in self.inner.find(table, clear_filters)]
        if not encrypted_filters:
            return results
        return [
            record for record in results
            if all(record.get(k) == v for k, v in encrypted_filters.items())
        ]

    def count(self, table: str) -> int:
        return self.inner.count(table)

    def clear_table(self, table: str) -> None:
        self.inner.clear_table(table)

    def close(self) -> None:
        self.inner.close()

    def begin_transaction(self) -> None:
        self.inner.begin_transaction()

    def commit(self) -> None:
        self.inner.commit()

    def rollback(self) -> None:
        self.inner.rollback()

    @property
    def in_transaction(self) -> bool:
        return self.inner.in_transaction

    def _encrypt_fields(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        for field in self.sensitive_fields.get(table, []):
            value = data.get(field)
            if value is not None and not self._is_encrypted(value):
                data[field] = self.provider.encrypt(str(value))
        return data

    def _decrypt_fields(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        decrypted = dict(data)
        for field in self.sensitive_fields.get(table, []):
            value = decrypted.get(field)
            if value is not None and self._is_encrypted(value):
                decrypted[field] = self.provider.decrypt(value)
        return decrypted

    @staticmethod
    def _is_encrypted(value: Any) -> bool:
        return isinstance(value, str) and value.startswith(ENCRYPTION_PREFIX)


class KeyManager:
    """Derives per-purpose keys from a master secret"""

    def __init__(self, master_key: str):
        self.master_key = master_key

    def derive_field_key(self, table: str, field: str) -> bytes:
        """Derive a unique key per table+field using HMAC-based key derivation"""
        context = f"payment_core:{table}:{field}".encode('utf-8')
        return hmac.new(self.master_key.encode('utf-8'), context, hashlib.sha256).digest()

    def fingerprint(self, table: str, field: str, value: str) -> str:
        """Deterministic keyed fingerprint used to look up an encrypted value"""
        key = self.derive_field_key(table, field)
        return hmac.new(key, value.encode('utf-8'), hashlib.sha256).hexdigest()


def create_encryption_provider(provider_type: str, master_key: str) -> EncryptionProvider:
    """Factory function to create encryption providers"""
    if not master_key:
        logger.warning("No master key provided - using NoOpEncryptionProvider")
        return NoOpEncryptionProvider()

    provider_type = provider_type.lower()
    if provider_type == "noop":
        return NoOpEncryptionProvider()
    if provider_type == "fernet":
        return FernetEncryptionProvider(master_key)
    if provider_type == "aesgcm":
        return AESGCMEncryptionProvider(master_key)
    raise ValueError(f"Unknown encryption provider '{provider_type}'")
