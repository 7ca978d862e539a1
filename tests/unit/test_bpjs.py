from __future__ import annotations

import base64
import hashlib
import hmac
import json

import httpx
import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from utils.bpjs import (
    BpjsClient,
    BpjsConfigError,
    BpjsProtocolError,
    BpjsTransportError,
    decode_verification_payload,
    derive_key_iv,
    generate_signature,
)
from utils.compression import compress_to_encoded_uri_component

CONS_ID = "12345"
SECRET = "s3cr3tK3y"
USER_KEY = "user-key-abc"
TIMESTAMP = "1700000000"
VALIDATE_URL = "https://bpjs.test/wsihs/api/rs/validate"
FOLLOW_UP_URL = "https://icare.bpjs-kesehatan.go.id/IHS/validasi?token=abc123"


def encrypt_payload(plain: str, key_material: str = CONS_ID + SECRET + TIMESTAMP) -> str:
    """Server side of the protocol: AES-256-CBC over the compressed JSON."""
    key, iv = derive_key_iv(key_material)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plain.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")


def make_client(handler) -> BpjsClient:
    return BpjsClient(
        cons_id=CONS_ID,
        secret_key=SECRET,
        user_key=USER_KEY,
        validate_url=VALIDATE_URL,
        transport=httpx.MockTransport(handler),
        clock=lambda: 1700000000.75,
    )


def test_signature_is_base64_hmac_of_cons_id_and_timestamp() -> None:
    expected = base64.b64encode(
        hmac.new(SECRET.encode(), f"{CONS_ID}&{TIMESTAMP}".encode(), hashlib.sha256).digest()
    ).decode()

    assert generate_signature(CONS_ID, SECRET, TIMESTAMP) == expected


def test_key_is_sha256_digest_and_iv_its_prefix() -> None:
    key, iv = derive_key_iv(CONS_ID + SECRET + TIMESTAMP)

    assert key == hashlib.sha256(b"12345s3cr3tK3y1700000000").digest()
    assert len(key) == 32
    assert iv == key[:16]


def test_decrypt_and_decode_yields_follow_up_url() -> None:
    payload = json.dumps({"url": FOLLOW_UP_URL, "status": "ok"})
    ciphertext = encrypt_payload(compress_to_encoded_uri_component(payload))

    assert decode_verification_payload(CONS_ID, SECRET, TIMESTAMP, ciphertext) == FOLLOW_UP_URL


def test_wrong_timestamp_cannot_decode() -> None:
    ciphertext = encrypt_payload(compress_to_encoded_uri_component(json.dumps({"url": FOLLOW_UP_URL})))

    assert decode_verification_payload(CONS_ID, SECRET, "1700000001", ciphertext) is None


def test_payload_without_url_is_a_soft_failure() -> None:
    ciphertext = encrypt_payload(compress_to_encoded_uri_component(json.dumps({"message": "peserta tidak aktif"})))

    assert decode_verification_payload(CONS_ID, SECRET, TIMESTAMP, ciphertext) is None


def test_garbage_ciphertext_is_a_soft_failure() -> None:
    assert decode_verification_payload(CONS_ID, SECRET, TIMESTAMP, "bm90LWEtY2lwaGVydGV4dA==") is None


@pytest.mark.asyncio
async def test_verify_patient_sends_signed_request_and_returns_url() -> None:
    seen: list[httpx.Request] = []
    ciphertext = encrypt_payload(compress_to_encoded_uri_component(json.dumps({"url": FOLLOW_UP_URL})))

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"response": ciphertext, "metaData": {"code": 200, "message": "OK"}})

    url = await make_client(handler).verify_patient("0001234567890", "00987")

    assert url == FOLLOW_UP_URL
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == VALIDATE_URL
    assert request.headers["X-cons-id"] == CONS_ID
    assert request.headers["X-timestamp"] == TIMESTAMP
    assert request.headers["X-signature"] == generate_signature(CONS_ID, SECRET, TIMESTAMP)
    assert request.headers["user_key"] == USER_KEY
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"param": "0001234567890", "kodedokter": 987}


@pytest.mark.asyncio
async def test_non_success_status_is_a_protocol_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="Service Unavailable")

    with pytest.raises(BpjsProtocolError, match="status 503") as excinfo:
        await make_client(handler).verify_patient("0001234567890", "987")

    assert excinfo.value.status_code == 503
    assert excinfo.value.body == "Service Unavailable"


@pytest.mark.asyncio
async def test_missing_ciphertext_is_a_protocol_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"metaData": {"code": 201, "message": "Data tidak ditemukan"}})

    with pytest.raises(BpjsProtocolError, match="missing response"):
        await make_client(handler).verify_patient("0001234567890", "987")


@pytest.mark.asyncio
async def test_network_error_is_a_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BpjsTransportError):
        await make_client(handler).verify_patient("0001234567890", "987")


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_request() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = BpjsClient(cons_id="", secret_key=SECRET, user_key=USER_KEY, transport=httpx.MockTransport(handler))

    with pytest.raises(BpjsConfigError):
        await client.verify_patient("0001234567890", "987")
    assert calls == []


@pytest.mark.asyncio
async def test_non_numeric_doctor_code_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(BpjsProtocolError, match="Invalid doctor code"):
        await make_client(handler).verify_patient("0001234567890", "dr-x")
