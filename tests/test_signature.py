"""
Unit tests for gateway signing and callback verification
"""

import hashlib
import pytest
from types import SimpleNamespace

from app.services.signature import (
    SignatureVerifier,
    build_path_checksum,
    build_signature_verifier,
    compute_signature,
    encode_payload,
)

SALT = "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399"
PATH = "/pg/v1/status"
BODY = b'{"code":"PAYMENT_SUCCESS","data":{"merchantTransactionId":"PAY1"}}'


@pytest.mark.unit
class TestChecksums:
    """Test the X-VERIFY construction"""

    def test_compute_signature_matches_documented_scheme(self):
        """Test sha256(base64(body) + path + salt) + ### + index"""
        expected = hashlib.sha256((encode_payload(BODY) + PATH + SALT).encode()).hexdigest() + "###1"

        assert compute_signature(BODY, PATH, SALT, "1") == expected

    def test_string_and_bytes_bodies_agree(self):
        """Test text bodies are hashed as their UTF-8 bytes"""
        assert compute_signature(BODY.decode(), PATH, SALT, "1") == compute_signature(BODY, PATH, SALT, "1")

    def test_path_checksum(self):
        """Test checksum for body-less status requests"""
        path = "/pg/v1/status/MID/PAY1"

        assert build_path_checksum(path, SALT) == hashlib.sha256((path + SALT).encode()).hexdigest()


@pytest.mark.unit
class TestSignatureVerifier:
    """Test callback signature verification"""

    def test_valid_signature(self):
        """Test a signature computed over the raw body verifies"""
        verifier = SignatureVerifier(SALT, "1")

        assert verifier.verify(BODY, compute_signature(BODY, PATH, SALT, "1"), PATH) is True

    def test_reserialized_body_does_not_verify(self):
        """Test whitespace changes break the signature"""
        verifier = SignatureVerifier(SALT, "1")
        signature = compute_signature(BODY, PATH, SALT, "1")
        reserialized = BODY.replace(b":", b": ")

        assert verifier.verify(reserialized, signature, PATH) is False

    def test_wrong_salt_rejected(self):
        """Test a signature made with another secret is rejected"""
        verifier = SignatureVerifier(SALT, "1")

        assert verifier.verify(BODY, compute_signature(BODY, PATH, "other-salt", "1"), PATH) is False

    def test_wrong_key_index_rejected(self):
        """Test the key index suffix is part of the comparison"""
        verifier = SignatureVerifier(SALT, "1")

        assert verifier.verify(BODY, compute_signature(BODY, PATH, SALT, "2"), PATH) is False

    def test_wrong_context_path_rejected(self):
        """Test the context path is part of the hash"""
        verifier = SignatureVerifier(SALT, "1")

        assert verifier.verify(BODY, compute_signature(BODY, "/other", SALT, "1"), PATH) is False

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_rejected(self, signature):
        """Test a missing header never verifies"""
        assert SignatureVerifier(SALT, "1").verify(BODY, signature, PATH) is False

    def test_missing_salt_rejected(self):
        """Test verification fails closed without a configured secret"""
        verifier = SignatureVerifier("", "1")

        assert verifier.verify(BODY, compute_signature(BODY, PATH, "", "1"), PATH) is False

    def test_bypass_accepts_anything(self):
        """Test the development bypass"""
        assert SignatureVerifier(SALT, "1", bypass=True).verify(BODY, None, PATH) is True


@pytest.mark.unit
class TestBuildSignatureVerifier:
    """Test the environment gate on the bypass"""

    @staticmethod
    def _config(env: str, bypass: bool):
        return SimpleNamespace(
            PAYMENT_SIGNATURE_BYPASS=bypass,
            PHONEPE_SALT_KEY=SALT,
            PHONEPE_KEY_INDEX="1",
            is_development=env == "development",
            is_testing=env == "testing",
        )

    def test_bypass_allowed_in_development(self):
        """Test development may disable verification"""
        verifier = build_signature_verifier(self._config("development", True))

        assert verifier.bypass is True

    def test_bypass_refused_in_production(self):
        """Test production can never build a bypassing verifier"""
        with pytest.raises(RuntimeError):
            build_signature_verifier(self._config("production", True))

    def test_production_verifier_checks_signatures(self):
        """Test the normal path keeps verification on"""
        verifier = build_signature_verifier(self._config("production", False))

        assert verifier.bypass is False
        assert verifier.verify(BODY, "bogus###1", PATH) is False
