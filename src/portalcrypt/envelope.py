"""
portalcrypt - Message envelope encryption.

Encrypts a single message payload with AES-256-GCM under the pairing
key. The message type and timestamp travel in cleartext for the relay,
but are bound to the ciphertext as additional authenticated data so
that neither can be altered or replayed under another label.

Each call is an independent transform: a fresh random 96-bit IV is
drawn per encryption and nothing is shared between calls.
"""

import base64
import binascii
import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Dict, NamedTuple

from cryptography.exceptions import InvalidTag

from .constants import IV_LENGTH, TAG_LENGTH
from .errors import AuthenticationError, DecodeError, EncodeError, ErrorCode
from .kdf import PortalKey

logger = logging.getLogger(__name__)


class EncryptedPayload(NamedTuple):
    """Base64 text of the IV and of the ciphertext with its appended tag."""

    iv: str
    ciphertext: str


def build_aad(msg_type: str, timestamp: int) -> bytes:
    """Associated data binding type and timestamp: b"<type>:<timestamp>"."""
    return f"{msg_type}:{timestamp}".encode("utf-8")


def serialize_payload(payload: Mapping) -> bytes:
    """
    Compact JSON in insertion order, non-ASCII kept as UTF-8.

    Produces the same bytes as JSON.stringify on the JavaScript peers.
    """
    if not isinstance(payload, Mapping):
        raise EncodeError(
            ErrorCode.E305_INVALID_PAYLOAD,
            f"Payload must be a mapping, not {type(payload).__name__}",
        )
    try:
        text = json.dumps(dict(payload), separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        return text.encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(
            ErrorCode.E305_INVALID_PAYLOAD,
            f"Payload is not JSON serializable: {e}",
        ) from e


def _check_metadata(msg_type: str, timestamp: int, error_cls) -> None:
    if not isinstance(msg_type, str) or not msg_type:
        raise error_cls(
            ErrorCode.E304_INVALID_ENVELOPE,
            "Message type must be a non-empty string",
        )
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        raise error_cls(
            ErrorCode.E306_INVALID_TIMESTAMP,
            "Timestamp must be a non-negative integer (epoch milliseconds)",
            {"timestamp": repr(timestamp)},
        )


def _b64decode(value: str, field: str, code: ErrorCode) -> bytes:
    if not isinstance(value, str):
        raise DecodeError(code, f"{field} must be base64 text, not {type(value).__name__}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(code, f"{field} is not valid base64") from e


def encrypt_message(
    key: PortalKey,
    payload: Mapping,
    msg_type: str,
    timestamp: int,
) -> EncryptedPayload:
    """
    Encrypt a message payload using AES-256-GCM.

    The message type and timestamp are used as additional authenticated
    data (AAD) to prevent tampering and replay under a different label.

    Args:
        key: Session key from key derivation
        payload: JSON-representable mapping
        msg_type: Message type, sent in cleartext alongside the envelope
        timestamp: Epoch milliseconds, sent in cleartext alongside the envelope

    Returns:
        EncryptedPayload with base64 IV and ciphertext (tag appended)

    Raises:
        EncodeError: If the payload or metadata cannot be serialized
    """
    _check_metadata(msg_type, timestamp, EncodeError)
    plaintext = serialize_payload(payload)

    iv = os.urandom(IV_LENGTH)
    ciphertext = key.aead.encrypt(iv, plaintext, build_aad(msg_type, timestamp))

    logger.debug(f"Encrypted '{msg_type}' message ({len(plaintext)} bytes)")

    return EncryptedPayload(
        iv=base64.b64encode(iv).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
    )


def decrypt_message(
    key: PortalKey,
    iv: str,
    ciphertext: str,
    msg_type: str,
    timestamp: int,
) -> Dict[str, Any]:
    """
    Decrypt a message payload using AES-256-GCM.

    The AAD is rebuilt from the caller-supplied type and timestamp, so a
    relabelled message fails verification like any other tampering.

    Returns:
        The decrypted payload

    Raises:
        DecodeError: If iv/ciphertext are malformed or the plaintext is not a JSON object
        AuthenticationError: If tag verification fails
    """
    _check_metadata(msg_type, timestamp, DecodeError)

    iv_bytes = _b64decode(iv, "iv", ErrorCode.E302_INVALID_IV)
    if len(iv_bytes) != IV_LENGTH:
        raise DecodeError(
            ErrorCode.E302_INVALID_IV,
            f"iv must be {IV_LENGTH} bytes",
            {"length": len(iv_bytes)},
        )

    ciphertext_bytes = _b64decode(ciphertext, "ciphertext", ErrorCode.E303_INVALID_CIPHERTEXT)
    if len(ciphertext_bytes) < TAG_LENGTH:
        raise DecodeError(
            ErrorCode.E303_INVALID_CIPHERTEXT,
            f"ciphertext is shorter than the {TAG_LENGTH}-byte tag",
            {"length": len(ciphertext_bytes)},
        )

    try:
        plaintext = key.aead.decrypt(iv_bytes, ciphertext_bytes, build_aad(msg_type, timestamp))
    except InvalidTag as e:
        logger.warning(f"Authentication failed for '{msg_type}' message at {timestamp}")
        raise AuthenticationError(
            ErrorCode.E104_AUTHENTICATION_FAILED,
            "Message authentication failed",
            {"type": msg_type, "timestamp": timestamp},
        ) from e

    try:
        payload = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(
            ErrorCode.E305_INVALID_PAYLOAD,
            "Decrypted payload is not valid JSON",
        ) from e

    if not isinstance(payload, dict):
        raise DecodeError(
            ErrorCode.E305_INVALID_PAYLOAD,
            "Decrypted payload is not a JSON object",
        )

    return payload
