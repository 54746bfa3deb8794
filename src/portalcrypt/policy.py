"""
portalcrypt - Message type policy.

Decides, per message type, whether a payload may travel in cleartext
or must be encrypted before it leaves the device. The relay can only
route on what it can read, so registration, pairing and the device
directory stay in cleartext.

The table is single-sourced here and must match on every peer; a
mismatch makes encrypted traffic undecryptable or lets cleartext
traffic be misrouted. Types that are not registered are encrypted.
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from cryptography.hazmat.primitives import hashes

from .config import Config, list_setting
from .constants import POLICY_VERSION
from .errors import ErrorCode, PolicyError

logger = logging.getLogger(__name__)


class Disposition(str, Enum):
    """How a message type is transmitted."""

    CLEARTEXT = "cleartext"
    ENCRYPTED = "encrypted"


# Read by the relay to route or to complete pairing.
ROUTING_TYPES = frozenset({
    "register_desktop",
    "register_mobile",
    "pair_response",
    "device_list",
})

# Interactive traffic currently exempted from encryption.
# TODO: move these into ENCRYPTED_TYPES once desktop and mobile builds
# both ship POLICY_VERSION 2.
INTERACTIVE_CLEARTEXT_TYPES = frozenset({
    "command",
    "command_response",
    "terminal_input",
    "terminal_output",
    "status_update",
    "request_status",
    "select_project",
    "project_changed",
    "git_files_changed",
    "attach_terminal",
    "detach_terminal",
    "resume_session",
})

# Remaining application types; registered so the table is complete.
ENCRYPTED_TYPES = frozenset({
    "pair_request",
    "pair",
    "unpair",
    "connect",
    "disconnect",
    "portal_list",
    "mobile_connection_update",
    "error",
    "ping",
    "pong",
})


def _check_type_name(msg_type: str) -> str:
    if not isinstance(msg_type, str) or not msg_type:
        raise PolicyError(
            ErrorCode.E201_INVALID_MESSAGE_TYPE,
            "Message type must be a non-empty string",
            {"type": repr(msg_type)},
        )
    return msg_type


class MessagePolicy:
    """
    Immutable, versioned mapping of message type to Disposition.

    A type may appear in exactly one bucket. Anything not listed is
    treated as encrypted.
    """

    def __init__(
        self,
        cleartext: Iterable[str],
        encrypted: Iterable[str] = (),
        version: int = POLICY_VERSION,
    ):
        cleartext_set = frozenset(_check_type_name(t) for t in cleartext)
        encrypted_set = frozenset(_check_type_name(t) for t in encrypted)

        overlap = cleartext_set & encrypted_set
        if overlap:
            raise PolicyError(
                ErrorCode.E202_CONFLICTING_POLICY,
                "Message types listed as both cleartext and encrypted",
                {"types": sorted(overlap)},
            )

        self._cleartext: FrozenSet[str] = cleartext_set
        self._encrypted: FrozenSet[str] = encrypted_set
        self.version = version

    @property
    def cleartext_types(self) -> FrozenSet[str]:
        return self._cleartext

    @property
    def encrypted_types(self) -> FrozenSet[str]:
        return self._encrypted

    def classify(self, msg_type: str) -> Disposition:
        """Return the disposition of a type, defaulting to ENCRYPTED."""
        _check_type_name(msg_type)
        if msg_type in self._cleartext:
            return Disposition.CLEARTEXT
        if msg_type not in self._encrypted:
            logger.debug(f"Unregistered message type '{msg_type}' classified as encrypted")
        return Disposition.ENCRYPTED

    def should_encrypt(self, msg_type: str) -> bool:
        return self.classify(msg_type) is Disposition.ENCRYPTED

    def is_known(self, msg_type: str) -> bool:
        return msg_type in self._cleartext or msg_type in self._encrypted

    def with_encrypted(self, *msg_types: str) -> "MessagePolicy":
        """
        Return a tightened copy in which the given types are encrypted.

        The copy carries the next policy version.
        """
        moved = frozenset(_check_type_name(t) for t in msg_types)
        return MessagePolicy(
            cleartext=self._cleartext - moved,
            encrypted=self._encrypted | moved,
            version=self.version + 1,
        )

    def as_table(self) -> Dict[str, Disposition]:
        table = {t: Disposition.CLEARTEXT for t in self._cleartext}
        table.update({t: Disposition.ENCRYPTED for t in self._encrypted})
        return dict(sorted(table.items()))

    def digest(self) -> str:
        """
        SHA-256 over the version and the sorted buckets.

        Two peers with equal digests classify every type identically.
        """
        digest = hashes.Hash(hashes.SHA256())
        digest.update(f"v{self.version}\n".encode("utf-8"))
        for msg_type, disposition in self.as_table().items():
            digest.update(f"{msg_type}={disposition.value}\n".encode("utf-8"))
        return digest.finalize().hex()

    @classmethod
    def from_config(cls, config: Optional[Config]) -> "MessagePolicy":
        """
        Build a policy from the [policy] section.

        The lists are changes to the built-in table: each type named in
        cleartext_types or encrypted_types moves to that bucket and every
        other type keeps its built-in disposition.

        Raises:
            PolicyError: If a type is named in both lists, or a routing
                type is listed as encrypted
        """
        if config is None:
            return DEFAULT_POLICY

        cleartext = frozenset(list_setting(config, "policy", "cleartext_types"))
        encrypted = frozenset(list_setting(config, "policy", "encrypted_types"))
        version = config.get("policy", "version", POLICY_VERSION)

        # The relay cannot route what it cannot read.
        blocked = encrypted & ROUTING_TYPES
        if blocked:
            raise PolicyError(
                ErrorCode.E202_CONFLICTING_POLICY,
                "Routing message types must stay in cleartext",
                {"types": sorted(blocked)},
            )

        if not cleartext and not encrypted and version == DEFAULT_POLICY.version:
            return DEFAULT_POLICY

        return cls(
            cleartext=(DEFAULT_POLICY.cleartext_types - encrypted) | cleartext,
            encrypted=(DEFAULT_POLICY.encrypted_types - cleartext) | encrypted,
            version=version,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MessagePolicy):
            return NotImplemented
        return (self.version, self._cleartext, self._encrypted) == (
            other.version,
            other._cleartext,
            other._encrypted,
        )

    def __hash__(self) -> int:
        return hash((self.version, self._cleartext, self._encrypted))

    def __repr__(self) -> str:
        return (
            f"MessagePolicy(version={self.version}, cleartext={len(self._cleartext)}, "
            f"encrypted={len(self._encrypted)})"
        )


DEFAULT_POLICY = MessagePolicy(
    cleartext=ROUTING_TYPES | INTERACTIVE_CLEARTEXT_TYPES,
    encrypted=ENCRYPTED_TYPES,
    version=POLICY_VERSION,
)


def should_encrypt(msg_type: str, policy: Optional[MessagePolicy] = None) -> bool:
    """Check whether a message type must be encrypted before transmission."""
    return (policy or DEFAULT_POLICY).should_encrypt(msg_type)


def classify(msg_type: str, policy: Optional[MessagePolicy] = None) -> Disposition:
    return (policy or DEFAULT_POLICY).classify(msg_type)
