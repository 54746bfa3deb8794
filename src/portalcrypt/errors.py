"""
portalcrypt - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used by the
portal encryption layer. Each error has a unique code for logging and
debugging, and can be serialized for the connection layer.

Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all portalcrypt error codes."""

    # General Errors (E001-E099)
    E002_INVALID_ARGUMENT = "E002"

    # Crypto Errors (E100-E199)
    E103_INVALID_KEY = "E103"
    E104_AUTHENTICATION_FAILED = "E104"
    E106_MISSING_KEY = "E106"

    # Policy Errors (E200-E299)
    E200_POLICY_ERROR = "E200"
    E201_INVALID_MESSAGE_TYPE = "E201"
    E202_CONFLICTING_POLICY = "E202"
    E203_CLEARTEXT_DOWNGRADE = "E203"

    # Wire Errors (E300-E399)
    E300_WIRE_ERROR = "E300"
    E301_INVALID_ENCODING = "E301"
    E302_INVALID_IV = "E302"
    E303_INVALID_CIPHERTEXT = "E303"
    E304_INVALID_ENVELOPE = "E304"
    E305_INVALID_PAYLOAD = "E305"
    E306_INVALID_TIMESTAMP = "E306"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"
    E705_INVALID_PASSPHRASE = "E705"
    E706_INVALID_DESKTOP_ID = "E706"


class PortalError(Exception):
    """Base exception class for all portalcrypt errors.

    All custom exceptions in portalcrypt inherit from this class.
    Provides standardized error handling and logging.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a portal error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class ConfigurationError(PortalError):
    """Exception raised for invalid pairing input or configuration.

    This includes an empty or malformed passphrase or desktop id, a bad
    iteration count, a missing session key for a type that must be
    encrypted, and configuration files that cannot be loaded or parsed.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration is invalid",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class AuthenticationError(PortalError):
    """Exception raised when AEAD tag verification fails.

    Covers tampering with iv or ciphertext, a key mismatch, and a
    type/timestamp that differs from the one bound at encryption time.
    The message must be discarded.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E104_AUTHENTICATION_FAILED,
        message: str = "Message authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class DecodeError(PortalError):
    """Exception raised for malformed wire data.

    This includes iv/ciphertext that are not valid base64 or have the
    wrong length, envelopes missing required fields, and plaintext that
    does not decode to a JSON object.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_WIRE_ERROR,
        message: str = "Failed to decode message",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class EncodeError(PortalError):
    """Exception raised when a message cannot be serialized for encryption."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E300_WIRE_ERROR,
        message: str = "Failed to encode message",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class PolicyError(PortalError):
    """Exception raised for message type policy violations.

    Unknown message types never raise this error; they are classified
    as encrypted. It is raised for malformed type names, policies that
    place one type in both buckets, and cleartext envelopes received for
    a type that must be encrypted.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_POLICY_ERROR,
        message: str = "Message policy violation",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
