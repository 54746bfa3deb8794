"""
portalcrypt - Wire envelope assembly.

Converts between application messages and the JSON envelopes carried
by the relay.

Envelope formats:
- Cleartext: {"type", "timestamp", "payload"}
- Encrypted: {"type", "timestamp", "iv", "ciphertext"}

Routing metadata ("id", "sessionToken") is copied verbatim in both
formats; any other routing field is rejected when sealing. Older
clients nested the encrypted fields as {"encrypted": {"iv", "ciphertext"}};
that form is accepted on input.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .constants import (
    FIELD_CIPHERTEXT,
    FIELD_ENCRYPTED,
    FIELD_IV,
    FIELD_PAYLOAD,
    FIELD_TIMESTAMP,
    FIELD_TYPE,
    ROUTING_FIELDS,
)
from .envelope import decrypt_message, encrypt_message
from .errors import ConfigurationError, DecodeError, EncodeError, ErrorCode, PolicyError
from .kdf import PortalKey
from .policy import DEFAULT_POLICY, MessagePolicy

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """An application message before sealing or after opening."""

    type: str
    timestamp: int
    payload: Dict[str, Any] = field(default_factory=dict)
    routing: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            FIELD_TYPE: self.type,
            FIELD_TIMESTAMP: self.timestamp,
            FIELD_PAYLOAD: self.payload,
        }
        data.update(_check_routing(self))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """
        Build a message from its dictionary form.

        Raises:
            DecodeError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise DecodeError(ErrorCode.E304_INVALID_ENVELOPE, "Message must be a JSON object")
        msg_type, timestamp = _read_header(data)
        payload = data.get(FIELD_PAYLOAD, {})
        if not isinstance(payload, dict):
            raise DecodeError(ErrorCode.E305_INVALID_PAYLOAD, "payload must be a JSON object")
        return cls(msg_type, timestamp, payload, _read_routing(data))


def _read_header(data: Dict[str, Any]):
    msg_type = data.get(FIELD_TYPE)
    if not isinstance(msg_type, str) or not msg_type:
        raise DecodeError(ErrorCode.E304_INVALID_ENVELOPE, "Envelope is missing a message type")

    timestamp = data.get(FIELD_TIMESTAMP)
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise DecodeError(
            ErrorCode.E306_INVALID_TIMESTAMP,
            "Envelope timestamp must be an integer",
            {"type": msg_type},
        )
    return msg_type, timestamp


def _read_routing(data: Dict[str, Any]) -> Dict[str, Any]:
    return {name: data[name] for name in ROUTING_FIELDS if name in data}


def _check_routing(message: "Message") -> Dict[str, Any]:
    unknown = sorted(set(message.routing) - set(ROUTING_FIELDS))
    if unknown:
        raise EncodeError(
            ErrorCode.E304_INVALID_ENVELOPE,
            f"Unsupported routing fields on '{message.type}' message",
            {"type": message.type, "fields": unknown},
        )
    return message.routing


def _encrypted_fields(envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if FIELD_IV in envelope or FIELD_CIPHERTEXT in envelope:
        return {FIELD_IV: envelope.get(FIELD_IV), FIELD_CIPHERTEXT: envelope.get(FIELD_CIPHERTEXT)}
    nested = envelope.get(FIELD_ENCRYPTED)
    if nested is None:
        return None
    if not isinstance(nested, dict):
        raise DecodeError(ErrorCode.E304_INVALID_ENVELOPE, "encrypted must be a JSON object")
    return {FIELD_IV: nested.get(FIELD_IV), FIELD_CIPHERTEXT: nested.get(FIELD_CIPHERTEXT)}


def is_encrypted(envelope: Dict[str, Any]) -> bool:
    """Check whether an envelope carries an encrypted payload."""
    return _encrypted_fields(envelope) is not None


def seal(
    message: Message,
    key: Optional[PortalKey],
    policy: MessagePolicy = DEFAULT_POLICY,
) -> Dict[str, Any]:
    """
    Turn a message into its wire envelope.

    Raises:
        ConfigurationError: If the type must be encrypted and no key is set
        EncodeError: If the payload cannot be serialized or routing
            carries fields other than id and sessionToken
        PolicyError: If the message type is malformed
    """
    routing = _check_routing(message)
    if not policy.should_encrypt(message.type):
        return message.to_dict()

    if key is None:
        raise ConfigurationError(
            ErrorCode.E106_MISSING_KEY,
            f"Message type '{message.type}' must be encrypted but no pairing key is set",
            {"type": message.type},
        )

    encrypted = encrypt_message(key, message.payload, message.type, message.timestamp)
    envelope = {
        FIELD_TYPE: message.type,
        FIELD_TIMESTAMP: message.timestamp,
        FIELD_IV: encrypted.iv,
        FIELD_CIPHERTEXT: encrypted.ciphertext,
    }
    envelope.update(routing)
    return envelope


def open_envelope(
    envelope: Dict[str, Any],
    key: Optional[PortalKey],
    policy: MessagePolicy = DEFAULT_POLICY,
    strict: bool = True,
) -> Message:
    """
    Recover the message carried by a wire envelope.

    Args:
        envelope: Parsed envelope dictionary
        key: Session key, required for encrypted envelopes
        policy: Message type policy
        strict: Reject cleartext envelopes for types that must be encrypted

    Raises:
        DecodeError: If the envelope is malformed
        AuthenticationError: If the encrypted payload fails verification
        ConfigurationError: If the envelope is encrypted and no key is set
        PolicyError: If a strict check finds a cleartext downgrade
    """
    if not isinstance(envelope, dict):
        raise DecodeError(ErrorCode.E304_INVALID_ENVELOPE, "Envelope must be a JSON object")

    msg_type, timestamp = _read_header(envelope)
    routing = _read_routing(envelope)
    encrypted = _encrypted_fields(envelope)

    if encrypted is None:
        if strict and policy.should_encrypt(msg_type):
            raise PolicyError(
                ErrorCode.E203_CLEARTEXT_DOWNGRADE,
                f"Received cleartext '{msg_type}' message that must be encrypted",
                {"type": msg_type, "policy_version": policy.version},
            )
        payload = envelope.get(FIELD_PAYLOAD, {})
        if not isinstance(payload, dict):
            raise DecodeError(ErrorCode.E305_INVALID_PAYLOAD, "payload must be a JSON object")
        return Message(msg_type, timestamp, payload, routing)

    if FIELD_PAYLOAD in envelope:
        raise DecodeError(
            ErrorCode.E304_INVALID_ENVELOPE,
            "Envelope carries both a cleartext payload and ciphertext",
            {"type": msg_type},
        )

    if key is None:
        raise ConfigurationError(
            ErrorCode.E106_MISSING_KEY,
            f"Received encrypted '{msg_type}' message but no pairing key is set",
            {"type": msg_type},
        )

    payload = decrypt_message(
        key, encrypted[FIELD_IV], encrypted[FIELD_CIPHERTEXT], msg_type, timestamp
    )
    return Message(msg_type, timestamp, payload, routing)


def dumps(envelope: Dict[str, Any]) -> str:
    """Serialize an envelope for the message-oriented transport."""
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


def loads(text) -> Dict[str, Any]:
    """
    Parse an envelope received from the transport.

    Raises:
        DecodeError: If the text is not a JSON object
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DecodeError(ErrorCode.E301_INVALID_ENCODING, f"Envelope is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(ErrorCode.E304_INVALID_ENVELOPE, "Envelope must be a JSON object")
    return data
