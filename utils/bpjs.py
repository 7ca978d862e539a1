"""
BPJS Verification Protocol Client

Signs and sends the eligibility validation request, then unwraps the response:
base64 ciphertext -> AES-256-CBC -> LZ-string URI component -> JSON -> ``url``.

Features:
- HMAC-SHA256 request signing (X-cons-id / X-timestamp / X-signature / user_key)
- Key and IV derived from sha256(cons_id + secret_key + timestamp)
- Request-phase failures raise VerificationError subclasses
- Decode-phase failures are soft: the client returns None

Usage:
    from utils.bpjs import BpjsClient

    client = BpjsClient()
    url = await client.verify_patient(member_id, doctor_code)
"""

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
import orjson
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pydantic import ValidationError

from utils.compression import DecompressionError, decompress_from_encoded_uri_component
from utils.config import settings
from utils.schemas import BpjsApiResponse

logger = logging.getLogger(__name__)


class VerificationError(Exception):
    """A verification attempt failed; the job pipeline applies its retry rule."""


class BpjsConfigError(VerificationError):
    """BPJS credentials are missing."""


class BpjsTransportError(VerificationError):
    """The BPJS endpoint could not be reached."""


class BpjsProtocolError(VerificationError):
    """The BPJS endpoint answered with an error status or an unusable envelope."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def generate_signature(cons_id: str, secret_key: str, timestamp: str) -> str:
    """Base64 HMAC-SHA256 of ``"{cons_id}&{timestamp}"`` keyed by the secret."""
    digest = hmac.new(
        secret_key.encode("utf-8"),
        f"{cons_id}&{timestamp}".encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def derive_key_iv(key_material: str) -> tuple[bytes, bytes]:
    """AES key is the full SHA-256 digest; the IV is its first 16 bytes."""
    digest = hashlib.sha256(key_material.encode("utf-8")).digest()
    return digest, digest[:16]


def string_decrypt(key_material: str, encrypted: str) -> str:
    """
    Decrypt a base64 AES-256-CBC payload with PKCS#7 padding.

    Raises:
        ValueError: If the ciphertext or padding is invalid
    """
    key, iv = derive_key_iv(key_material)
    ciphertext = base64.b64decode(encrypted)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    plain = unpadder.update(padded) + unpadder.finalize()
    return plain.decode("utf-8")


def decode_verification_payload(cons_id: str, secret_key: str, timestamp: str, encrypted: str) -> str | None:
    """
    Turn the encrypted ``response`` field into the follow-up URL.

    Returns:
        The ``url`` field of the decoded JSON, or None when any step yields nothing usable
    """
    try:
        decrypted = string_decrypt(cons_id + secret_key + timestamp, encrypted)
        decompressed = decompress_from_encoded_uri_component(decrypted)
    except (ValueError, DecompressionError) as e:
        logger.warning("BPJS payload could not be decoded", extra={"error": str(e), "timestamp": timestamp})
        return None

    if not decompressed:
        logger.warning("BPJS payload decompressed to nothing", extra={"timestamp": timestamp})
        return None

    try:
        parsed = orjson.loads(decompressed)
    except orjson.JSONDecodeError as e:
        logger.warning("BPJS payload is not valid JSON", extra={"error": str(e)})
        return None

    logger.debug("BPJS parsed response", extra={"parsed_response": parsed})

    if not isinstance(parsed, dict):
        return None
    url = parsed.get("url")
    return url if isinstance(url, str) and url else None


class BpjsClient:
    """Client for the BPJS ``rs/validate`` endpoint."""

    def __init__(
        self,
        cons_id: str | None = None,
        secret_key: str | None = None,
        user_key: str | None = None,
        validate_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cons_id = settings.BPJS_CONS_ID if cons_id is None else cons_id
        self.secret_key = settings.BPJS_SECRET_KEY if secret_key is None else secret_key
        self.user_key = settings.BPJS_USER_KEY if user_key is None else user_key
        self.validate_url = validate_url or settings.BPJS_VALIDATE_URL
        self.timeout = timeout or settings.BPJS_TIMEOUT
        self._transport = transport
        self._clock = clock

    def _timestamp(self) -> str:
        return str(int(self._clock()))

    def build_headers(self, timestamp: str) -> dict[str, str]:
        if not self.cons_id or not self.secret_key or not self.user_key:
            raise BpjsConfigError("BPJS API credentials not configured")

        return {
            "X-cons-id": self.cons_id,
            "X-timestamp": timestamp,
            "X-signature": generate_signature(self.cons_id, self.secret_key, timestamp),
            "user_key": self.user_key,
            "Content-Type": "application/json",
        }

    async def request_validation(self, member_id: str, doctor_code: str, timestamp: str) -> BpjsApiResponse:
        """
        Send the signed validation request.

        Args:
            member_id: BPJS member card number
            doctor_code: BPJS doctor code, sent as an integer
            timestamp: Unix seconds as text; the same value later derives the AES key

        Returns:
            Response envelope with a non-empty ``response`` field

        Raises:
            BpjsConfigError: If credentials are missing
            BpjsTransportError: If the request could not be sent
            BpjsProtocolError: On a non-2xx status or an envelope without ciphertext
        """
        headers = self.build_headers(timestamp)

        try:
            body: dict[str, Any] = {"param": member_id, "kodedokter": int(doctor_code)}
        except (TypeError, ValueError) as e:
            raise BpjsProtocolError(f"Invalid doctor code: {doctor_code!r}") from e

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.validate_url, headers=headers, content=orjson.dumps(body))
        except httpx.HTTPError as e:
            raise BpjsTransportError(f"BPJS request failed: {e}") from e

        if not response.is_success:
            raise BpjsProtocolError(
                f"API request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            envelope = BpjsApiResponse(**orjson.loads(response.content))
        except (orjson.JSONDecodeError, TypeError, ValidationError) as e:
            raise BpjsProtocolError(f"Invalid API response from BPJS: {e}", status_code=response.status_code) from e

        if not envelope.response:
            raise BpjsProtocolError(
                "Invalid API response from BPJS: missing response field",
                status_code=response.status_code,
                body=response.text,
            )

        logger.debug(
            "BPJS response received",
            extra={"meta_data": envelope.metaData.model_dump() if envelope.metaData else None},
        )
        return envelope

    async def verify_patient(self, member_id: str, doctor_code: str) -> str | None:
        """
        Obtain the follow-up URL for a member.

        Returns:
            The follow-up URL, or None when the response could not be decoded

        Raises:
            VerificationError: If the request phase failed
        """
        timestamp = self._timestamp()

        logger.debug(
            "Making BPJS API request",
            extra={"member_id": member_id, "doctor_code": doctor_code, "timestamp": timestamp},
        )

        envelope = await self.request_validation(member_id, doctor_code, timestamp)
        return decode_verification_payload(self.cons_id, self.secret_key, timestamp, envelope.response)
