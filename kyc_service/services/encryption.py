"""
Envelope encryption for custodied KYC data.

Every payload gets its own random AES-256-GCM data key. The data key is wrapped
with a key-encryption key derived (HKDF-SHA256) from the configured master key
and the purpose name, so ciphertext produced for "documents" can never be
opened as "personal-data" and vice versa.

Blob layout::

    version (1) | key nonce (12) | wrapped data key (48) | nonce (12) | ciphertext+tag
"""
import base64
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from kyc_service.core.config import settings
from kyc_service.core.errors import ConfigurationError, SecurityError

log = logging.getLogger(__name__)

PURPOSE_DOCUMENTS = "documents"
PURPOSE_PERSONAL_DATA = "personal-data"

ENCRYPTION_METHOD = "AES-256-GCM/envelope"

_VERSION = b"\x01"
_NONCE_LEN = 12
_WRAPPED_KEY_LEN = 32 + 16
_HEADER_LEN = 1 + _NONCE_LEN + _WRAPPED_KEY_LEN + _NONCE_LEN


def content_hash(data: bytes) -> str:
    """Base64 SHA-256 of ``data``; stored next to every custodied blob."""
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


class EnvelopeProtector:
    """protect/unprotect bound to one named purpose."""

    def __init__(self, purpose: str, master_key: str | bytes):
        if not master_key:
            raise ConfigurationError("KYC_MASTER_KEY is not configured")
        if isinstance(master_key, str):
            master_key = master_key.encode("utf-8")
        self.purpose = purpose
        self._aad = f"kyc-service:{purpose}".encode("utf-8")
        self._kek = AESGCM(
            HKDF(
                algorithm=hashes.SHA256(),
                length=32,
                salt=None,
                info=self._aad,
            ).derive(master_key)
        )

    def protect(self, plaintext: bytes) -> bytes:
        data_key = AESGCM.generate_key(bit_length=256)
        key_nonce = os.urandom(_NONCE_LEN)
        wrapped_key = self._kek.encrypt(key_nonce, data_key, self._aad)

        nonce = os.urandom(_NONCE_LEN)
        ciphertext = AESGCM(data_key).encrypt(nonce, plaintext, self._aad)
        return _VERSION + key_nonce + wrapped_key + nonce + ciphertext

    def unprotect(self, blob: bytes) -> bytes:
        if len(blob) < _HEADER_LEN + 16 or blob[:1] != _VERSION:
            raise SecurityError(f"Malformed {self.purpose} ciphertext")

        offset = 1
        key_nonce = blob[offset:offset + _NONCE_LEN]
        offset += _NONCE_LEN
        wrapped_key = blob[offset:offset + _WRAPPED_KEY_LEN]
        offset += _WRAPPED_KEY_LEN
        nonce = blob[offset:offset + _NONCE_LEN]
        offset += _NONCE_LEN

        try:
            data_key = self._kek.decrypt(key_nonce, wrapped_key, self._aad)
            return AESGCM(data_key).decrypt(nonce, blob[offset:], self._aad)
        except InvalidTag as e:
            log.error(f"Failed to unprotect {self.purpose} payload: authentication tag mismatch")
            raise SecurityError(f"Unable to decrypt {self.purpose} payload") from e

    def protect_text(self, text: str) -> str:
        return base64.b64encode(self.protect(text.encode("utf-8"))).decode("ascii")

    def unprotect_text(self, token: str) -> str:
        try:
            blob = base64.b64decode(token, validate=True)
        except ValueError as e:
            raise SecurityError(f"Malformed {self.purpose} ciphertext") from e
        return self.unprotect(blob).decode("utf-8")


def get_protector(purpose: str) -> EnvelopeProtector:
    return EnvelopeProtector(purpose, settings.KYC_MASTER_KEY)
