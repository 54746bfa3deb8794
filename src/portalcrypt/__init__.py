"""
portalcrypt - End-to-end encryption for relayed desktop/mobile portal traffic

Derives a shared key from a pairing passphrase and desktop id, and
encrypts message payloads so that the relay forwarding them cannot read
their contents. A single policy table decides which message types stay
in cleartext for routing.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .channel import PortalChannel
from .config import Config
from .constants import APP_NAME, VERSION
from .envelope import EncryptedPayload, decrypt_message, encrypt_message
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    ErrorCode,
    PolicyError,
    PortalError,
)
from .kdf import (
    Argon2KeyDeriver,
    KeyCache,
    KeyDeriver,
    Pbkdf2KeyDeriver,
    PortalKey,
    derive_key,
    derive_key_async,
)
from .policy import DEFAULT_POLICY, Disposition, MessagePolicy, should_encrypt
from .wire import Message, open_envelope, seal

__all__ = [
    "APP_NAME",
    "DEFAULT_POLICY",
    "VERSION",
    "Argon2KeyDeriver",
    "AuthenticationError",
    "Config",
    "ConfigurationError",
    "DecodeError",
    "Disposition",
    "EncodeError",
    "EncryptedPayload",
    "ErrorCode",
    "KeyCache",
    "KeyDeriver",
    "Message",
    "MessagePolicy",
    "Pbkdf2KeyDeriver",
    "PolicyError",
    "PortalChannel",
    "PortalError",
    "PortalKey",
    "decrypt_message",
    "derive_key",
    "derive_key_async",
    "encrypt_message",
    "open_envelope",
    "seal",
    "should_encrypt",
    "__license__",
    "__version__",
]
