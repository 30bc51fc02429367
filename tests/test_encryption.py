"""
Tests for envelope encryption and content hashing
"""

import pytest

from kyc_service.core.errors import ConfigurationError, SecurityError
from kyc_service.services.encryption import (
    PURPOSE_DOCUMENTS,
    PURPOSE_PERSONAL_DATA,
    EnvelopeProtector,
    content_hash,
)

from conftest import TEST_MASTER_KEY


class TestEnvelopeProtector:
    """Tests for EnvelopeProtector"""

    def test_protect_then_unprotect(self, document_protector):
        blob = document_protector.protect(b"passport scan bytes")
        assert b"passport scan bytes" not in blob
        assert document_protector.unprotect(blob) == b"passport scan bytes"

    def test_each_payload_gets_a_fresh_data_key(self, document_protector):
        """Same plaintext never produces the same ciphertext"""
        assert document_protector.protect(b"same") != document_protector.protect(b"same")

    def test_purposes_are_isolated(self, document_protector, personal_protector):
        """Ciphertext made for documents cannot be opened as personal data"""
        blob = document_protector.protect(b"secret")
        with pytest.raises(SecurityError):
            personal_protector.unprotect(blob)

    def test_other_master_key_cannot_decrypt(self, document_protector):
        blob = document_protector.protect(b"secret")
        other = EnvelopeProtector(PURPOSE_DOCUMENTS, "another-master-key")
        with pytest.raises(SecurityError):
            other.unprotect(blob)

    def test_tampered_ciphertext_rejected(self, document_protector):
        blob = bytearray(document_protector.protect(b"secret document"))
        blob[-1] ^= 0x01
        with pytest.raises(SecurityError):
            document_protector.unprotect(bytes(blob))

    def test_truncated_blob_rejected(self, document_protector):
        with pytest.raises(SecurityError):
            document_protector.unprotect(b"\x01short")

    def test_text_helpers(self):
        protector = EnvelopeProtector(PURPOSE_PERSONAL_DATA, TEST_MASTER_KEY)
        token = protector.protect_text('{"firstName": "Ada"}')
        assert "Ada" not in token
        assert protector.unprotect_text(token) == '{"firstName": "Ada"}'

    def test_text_helper_rejects_non_base64(self, personal_protector):
        with pytest.raises(SecurityError):
            personal_protector.unprotect_text("not base64 at all!")

    def test_missing_master_key(self):
        with pytest.raises(ConfigurationError):
            EnvelopeProtector(PURPOSE_DOCUMENTS, "")


class TestContentHash:
    def test_sha256_base64(self):
        assert content_hash(b"") == "47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    def test_differs_per_content(self):
        assert content_hash(b"a") != content_hash(b"b")
