"""
portalcrypt - Per-connection channel.

PortalChannel is what a connection layer holds for one relay session:
the derived key, the message policy, and seal/open helpers that stamp
timestamps and handle JSON framing. It keeps no per-message state, so
one message failing to open has no effect on the next.

Version: 1.0.0
"""

import logging
import time
from typing import Any, Dict, Optional

from .config import Config
from .kdf import KeyCache, KeyDeriver, PortalKey, create_deriver, derive_key_async
from .policy import DEFAULT_POLICY, MessagePolicy
from .wire import Message, dumps, loads, open_envelope, seal

logger = logging.getLogger(__name__)

# Shared by every channel in the process; keys are never persisted.
_default_cache = KeyCache()


def current_timestamp() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class PortalChannel:
    """Encrypts and decrypts relay traffic for one pairing.

    Attributes:
        policy: Message type policy in force for this channel
        deriver: Key deriver used by pair()
        strict: Reject cleartext envelopes for types that must be encrypted
    """

    def __init__(
        self,
        policy: Optional[MessagePolicy] = None,
        deriver: Optional[KeyDeriver] = None,
        cache: Optional[KeyCache] = None,
        strict: bool = True,
    ):
        self.policy = policy or DEFAULT_POLICY
        self.deriver = deriver or create_deriver()
        self.cache = cache if cache is not None else _default_cache
        self.strict = strict
        self._key: Optional[PortalKey] = None

    @classmethod
    def from_config(cls, config: Config, cache: Optional[KeyCache] = None) -> "PortalChannel":
        """Build a channel from the [kdf] and [policy] sections."""
        return cls(
            policy=MessagePolicy.from_config(config),
            deriver=create_deriver(config),
            cache=cache,
        )

    @property
    def is_paired(self) -> bool:
        return self._key is not None

    @property
    def key(self) -> Optional[PortalKey]:
        return self._key

    @property
    def fingerprint(self) -> Optional[str]:
        return self._key.fingerprint if self._key else None

    def pair(self, passphrase: str, desktop_id: str) -> PortalKey:
        """
        Derive (or reuse) the key for a pairing.

        Safe to repeat on reconnect: the cache returns the same key
        without running the KDF again.

        Raises:
            ConfigurationError: If the pairing secret is invalid
        """
        self._key = self.cache.get_or_derive(self.deriver, passphrase, desktop_id)
        logger.info(f"Paired with desktop {desktop_id} (key {self._key.fingerprint[:16]})")
        return self._key

    async def apair(self, passphrase: str, desktop_id: str) -> PortalKey:
        """Like pair(), but runs a first-time derivation in an executor."""
        self._key = await derive_key_async(
            passphrase,
            desktop_id,
            _CachingDeriver(self.deriver, self.cache),
        )
        logger.info(f"Paired with desktop {desktop_id} (key {self._key.fingerprint[:16]})")
        return self._key

    def unpair(self) -> None:
        """Forget the key held by this channel."""
        self._key = None
        logger.info("Channel unpaired")

    def seal(
        self,
        msg_type: str,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[int] = None,
        **routing: Any,
    ) -> Dict[str, Any]:
        """Build the wire envelope for an outgoing message."""
        message = Message(
            type=msg_type,
            timestamp=current_timestamp() if timestamp is None else timestamp,
            payload=payload if payload is not None else {},
            routing=routing,
        )
        return seal(message, self._key, self.policy)

    def open(self, envelope: Dict[str, Any]) -> Message:
        """Recover the message carried by an incoming envelope."""
        return open_envelope(envelope, self._key, self.policy, strict=self.strict)

    def send_text(
        self,
        msg_type: str,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[int] = None,
        **routing: Any,
    ) -> str:
        """seal() followed by JSON framing."""
        return dumps(self.seal(msg_type, payload, timestamp, **routing))

    def receive_text(self, text) -> Message:
        """JSON parsing followed by open()."""
        return self.open(loads(text))


class _CachingDeriver(KeyDeriver):
    """Routes derive() through a KeyCache so async pairing shares cached keys."""

    def __init__(self, inner: KeyDeriver, cache: KeyCache):
        super().__init__(inner.namespace)
        self.inner = inner
        self.cache = cache
        self.algorithm = inner.algorithm

    def derive(self, passphrase: str, desktop_id: str) -> PortalKey:
        return self.cache.get_or_derive(self.inner, passphrase, desktop_id)

    def _stretch(self, secret: bytes, salt: bytes) -> bytes:
        return self.inner._stretch(secret, salt)

    def cache_token(self) -> str:
        return self.inner.cache_token()
