"""
Gateway request signing and callback signature verification

The gateway's X-VERIFY scheme is ``sha256(base64(body) + path + salt)``
followed by ``###`` and the salt key index. Callbacks are verified against the
raw bytes exactly as received; a parsed-and-reserialized body will not match.
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_SEPARATOR = "###"


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def encode_payload(raw_body: Union[bytes, str]) -> str:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return base64.b64encode(raw_body).decode("ascii")


def build_payload_checksum(payload_base64: str, endpoint_path: str, salt_key: str) -> str:
    """Checksum for requests that carry a base64 payload"""
    return sha256_hex(payload_base64 + endpoint_path + salt_key)


def build_path_checksum(endpoint_path: str, salt_key: str) -> str:
    """Checksum for body-less requests such as status checks"""
    return sha256_hex(endpoint_path + salt_key)


def format_x_verify(checksum: str, key_index: str) -> str:
    return f"{checksum}{SIGNATURE_SEPARATOR}{key_index}"


def compute_signature(
    raw_body: Union[bytes, str],
    context_path: str,
    salt_key: str,
    key_index: str
) -> str:
    """
    X-VERIFY value the gateway sends for ``raw_body``
    """
    checksum = build_payload_checksum(encode_payload(raw_body), context_path, salt_key)
    return format_x_verify(checksum, key_index)


class SignatureVerifier:
    """
    Verifies that a callback body was produced by the gateway

    ``bypass`` disables verification entirely and exists for local
    development only; build instances through ``build_signature_verifier`` so
    the environment gate is applied in one place.
    """

    def __init__(self, salt_key: str, key_index: str = "1", bypass: bool = False):
        self.salt_key = salt_key
        self.key_index = key_index
        self.bypass = bypass

    def verify(
        self,
        raw_body: bytes,
        declared_signature: Optional[str],
        context_path: str
    ) -> bool:
        if self.bypass:
            logger.warning("Signature verification bypassed (development mode)")
            return True

        if not self.salt_key:
            logger.error("Signature verification failed: gateway salt key is not configured")
            return False

        if not declared_signature:
            return False

        expected = compute_signature(raw_body, context_path, self.salt_key, self.key_index)
        return hmac.compare_digest(expected.encode("ascii"), declared_signature.strip().encode("utf-8"))


def build_signature_verifier(config) -> SignatureVerifier:
    """
    Build the verifier for the given settings

    Bypass is honoured only outside production; Settings already refuses the
    flag there, this re-checks for settings objects built by hand.
    """
    bypass = bool(config.PAYMENT_SIGNATURE_BYPASS)
    if bypass and not (config.is_development or config.is_testing):
        raise RuntimeError("Signature verification bypass is not allowed in this environment")

    return SignatureVerifier(
        salt_key=config.PHONEPE_SALT_KEY,
        key_index=config.PHONEPE_KEY_INDEX,
        bypass=bypass
    )


def get_signature_verifier() -> SignatureVerifier:
    """
    FastAPI dependency
    """
    from app.config import settings

    return build_signature_verifier(settings)
