"""
portalcrypt - Pairing key derivation.

Turns a pairing passphrase and a stable desktop identifier into the
symmetric AES-256-GCM key shared by a desktop and all of its paired
mobile devices.

The salt is the SHA-256 digest of "<namespace>:<desktop_id>", so every
party computes the same salt without a key-exchange round trip. The
passphrase is then stretched with PBKDF2-HMAC-SHA256. Every device that
knows the same (passphrase, desktop_id) pair derives an identical key
offline; the relay never observes the passphrase, the salt or the key.

Derivation sits behind the KeyDeriver interface so that a per-device or
ratcheted scheme can replace it without changing the envelope format.

All cryptographic operations use well-tested, open-source libraries:
- cryptography library (Apache 2.0/BSD License)
- argon2-cffi (MIT License)
"""

import asyncio
import functools
import json
import logging
import threading
import unicodedata
from abc import ABC, abstractmethod
from typing import Dict, Optional

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import Config
from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    FINGERPRINT_LABEL,
    KDF_ARGON2ID,
    KDF_PBKDF2,
    KEY_LENGTH,
    MAX_DESKTOP_ID_LENGTH,
    MIN_RECOMMENDED_ITERATIONS,
    PBKDF2_ITERATIONS,
    SALT_NAMESPACE,
)
from .errors import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)


class PortalKey:
    """
    Session key for the portal envelope.

    The raw key bytes are handed straight to the AEAD primitive and are
    not kept as an attribute, so the key cannot be read back through the
    public API. Only a one-way fingerprint is exposed, which two peers
    can compare to confirm they derived the same key.
    """

    __slots__ = ("_aead", "_fingerprint", "algorithm")

    def __init__(self, key_bytes: bytes, algorithm: str = KDF_PBKDF2):
        if len(key_bytes) != KEY_LENGTH:
            raise ConfigurationError(
                ErrorCode.E103_INVALID_KEY,
                f"Key must be {KEY_LENGTH} bytes",
                {"length": len(key_bytes)},
            )
        self._aead = AESGCM(key_bytes)
        digest = hashes.Hash(hashes.SHA256())
        digest.update(FINGERPRINT_LABEL)
        digest.update(key_bytes)
        self._fingerprint = digest.finalize().hex()
        self.algorithm = algorithm

    @property
    def aead(self) -> AESGCM:
        return self._aead

    @property
    def fingerprint(self) -> str:
        """64-character hex fingerprint; safe to display or log."""
        return self._fingerprint

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PortalKey):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self) -> int:
        return hash(self._fingerprint)

    def __repr__(self) -> str:
        return f"PortalKey(algorithm={self.algorithm!r}, fingerprint={self._fingerprint[:16]}...)"


def validate_pairing_secret(passphrase: str, desktop_id: str) -> None:
    """
    Check the pairing inputs before any derivation work is done.

    Raises:
        ConfigurationError: If either value is missing or malformed
    """
    if not isinstance(passphrase, str) or not passphrase.strip():
        raise ConfigurationError(
            ErrorCode.E705_INVALID_PASSPHRASE,
            "Passphrase must be a non-empty string",
        )
    if not isinstance(desktop_id, str) or not desktop_id:
        raise ConfigurationError(
            ErrorCode.E706_INVALID_DESKTOP_ID,
            "Desktop id must be a non-empty string",
        )
    if len(desktop_id) > MAX_DESKTOP_ID_LENGTH:
        raise ConfigurationError(
            ErrorCode.E706_INVALID_DESKTOP_ID,
            f"Desktop id exceeds {MAX_DESKTOP_ID_LENGTH} characters",
            {"length": len(desktop_id)},
        )
    # Whitespace and control characters (Z*, C* categories) are never
    # part of a generated device id.
    if any(unicodedata.category(ch)[0] in ("Z", "C") for ch in desktop_id):
        raise ConfigurationError(
            ErrorCode.E706_INVALID_DESKTOP_ID,
            "Desktop id contains whitespace or control characters",
        )
    for name, value in (("passphrase", passphrase), ("desktop id", desktop_id)):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ConfigurationError(
                ErrorCode.E002_INVALID_ARGUMENT,
                f"The {name} is not valid Unicode text",
            ) from e


def compute_salt(desktop_id: str, namespace: str = SALT_NAMESPACE) -> bytes:
    """
    Compute the deterministic pairing salt for a desktop.

    Returns the 32-byte SHA-256 digest of "<namespace>:<desktop_id>".
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(f"{namespace}:{desktop_id}".encode("utf-8"))
    return digest.finalize()


class KeyDeriver(ABC):
    """Interface for turning a pairing secret into a PortalKey."""

    algorithm: str = ""

    def __init__(self, namespace: str = SALT_NAMESPACE):
        if not isinstance(namespace, str) or not namespace:
            raise ConfigurationError(
                ErrorCode.E703_INVALID_CONFIG,
                "Salt namespace must be a non-empty string",
            )
        self.namespace = namespace

    def derive(self, passphrase: str, desktop_id: str) -> PortalKey:
        """
        Derive the session key for a pairing.

        Raises:
            ConfigurationError: If the passphrase or desktop id is invalid
        """
        validate_pairing_secret(passphrase, desktop_id)
        salt = compute_salt(desktop_id, self.namespace)
        key_bytes = self._stretch(passphrase.encode("utf-8"), salt)
        key = PortalKey(key_bytes, self.algorithm)
        logger.debug(f"Derived {self.algorithm} key {key.fingerprint[:16]} for desktop {desktop_id}")
        return key

    @abstractmethod
    def _stretch(self, secret: bytes, salt: bytes) -> bytes:
        """Return KEY_LENGTH bytes of key material."""

    @abstractmethod
    def cache_token(self) -> str:
        """Stable description of the parameters, used to scope cache entries."""


class Pbkdf2KeyDeriver(KeyDeriver):
    """
    PBKDF2-HMAC-SHA256 deriver, interoperable with the desktop and mobile apps.

    The iteration count trades brute-force resistance against the time a
    connection waits for its key. The default is below current guidance
    so that pure-JS peers stay responsive.
    """

    algorithm = KDF_PBKDF2

    def __init__(self, iterations: int = PBKDF2_ITERATIONS, namespace: str = SALT_NAMESPACE):
        super().__init__(namespace)
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise ConfigurationError(
                ErrorCode.E703_INVALID_CONFIG,
                "PBKDF2 iterations must be a positive integer",
                {"iterations": iterations},
            )
        self.iterations = iterations
        if iterations < MIN_RECOMMENDED_ITERATIONS:
            logger.warning(
                f"PBKDF2 iteration count {iterations} is below the recommended "
                f"{MIN_RECOMMENDED_ITERATIONS}"
            )

    def _stretch(self, secret: bytes, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(secret)

    def cache_token(self) -> str:
        return f"{self.algorithm}:{self.iterations}:{self.namespace}"


class Argon2KeyDeriver(KeyDeriver):
    """
    Argon2id deriver (memory-hard).

    Not interoperable with peers that use PBKDF2; every paired device
    must be configured with the same algorithm and parameters.
    """

    algorithm = KDF_ARGON2ID

    def __init__(
        self,
        time_cost: int = ARGON2_TIME_COST,
        memory_cost: int = ARGON2_MEMORY_COST,
        parallelism: int = ARGON2_PARALLELISM,
        namespace: str = SALT_NAMESPACE,
    ):
        super().__init__(namespace)
        for name, value in (
            ("time_cost", time_cost),
            ("memory_cost", memory_cost),
            ("parallelism", parallelism),
        ):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationError(
                    ErrorCode.E703_INVALID_CONFIG,
                    f"Argon2 {name} must be a positive integer",
                    {name: value},
                )
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism

    def _stretch(self, secret: bytes, salt: bytes) -> bytes:
        return hash_secret_raw(
            secret=secret,
            salt=salt,
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=KEY_LENGTH,
            type=Type.ID,
        )

    def cache_token(self) -> str:
        return (
            f"{self.algorithm}:{self.time_cost}:{self.memory_cost}:"
            f"{self.parallelism}:{self.namespace}"
        )


def create_deriver(config: Optional[Config] = None) -> KeyDeriver:
    """
    Build the deriver selected by the [kdf] configuration section.

    Raises:
        ConfigurationError: If the algorithm is unknown
    """
    if config is None:
        return Pbkdf2KeyDeriver()

    algorithm = config.get("kdf", "algorithm", KDF_PBKDF2)
    namespace = config.get("kdf", "namespace", SALT_NAMESPACE)

    if algorithm == KDF_PBKDF2:
        return Pbkdf2KeyDeriver(
            iterations=config.get("kdf", "iterations", PBKDF2_ITERATIONS),
            namespace=namespace,
        )
    if algorithm == KDF_ARGON2ID:
        return Argon2KeyDeriver(
            time_cost=config.get("kdf", "argon2_time_cost", ARGON2_TIME_COST),
            memory_cost=config.get("kdf", "argon2_memory_cost", ARGON2_MEMORY_COST),
            parallelism=config.get("kdf", "argon2_parallelism", ARGON2_PARALLELISM),
            namespace=namespace,
        )

    raise ConfigurationError(
        ErrorCode.E703_INVALID_CONFIG,
        f"Unknown key derivation algorithm: {algorithm}",
        {"algorithm": algorithm, "supported": [KDF_PBKDF2, KDF_ARGON2ID]},
    )


def derive_key(
    passphrase: str,
    desktop_id: str,
    iterations: int = PBKDF2_ITERATIONS,
    namespace: str = SALT_NAMESPACE,
) -> PortalKey:
    """
    Derive the shared portal key from the pairing passphrase and desktop id.

    All parties (desktop and every paired mobile) derive the same key,
    enabling broadcast-style communication through the relay.

    Raises:
        ConfigurationError: If passphrase, desktop id or iterations are invalid
    """
    return Pbkdf2KeyDeriver(iterations, namespace).derive(passphrase, desktop_id)


async def derive_key_async(
    passphrase: str,
    desktop_id: str,
    deriver: Optional[KeyDeriver] = None,
) -> PortalKey:
    """
    Derive a key in the default executor.

    The stretch is CPU-bound; running it off the event loop keeps
    latency-sensitive coroutines (terminal streaming, heartbeats) moving.
    """
    deriver = deriver or Pbkdf2KeyDeriver()
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(deriver.derive, passphrase, desktop_id))


class KeyCache:
    """
    In-memory cache of derived keys for the life of a process.

    Keys are never written to storage. Entries are indexed by a SHA-256
    digest of the deriver parameters and the pairing secret, so the
    passphrase itself is not held as a dictionary key. Concurrent callers
    asking for the same pairing wait for a single derivation.
    """

    def __init__(self):
        self._keys: Dict[str, PortalKey] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _entry_id(deriver: KeyDeriver, passphrase: str, desktop_id: str) -> str:
        material = json.dumps([deriver.cache_token(), passphrase, desktop_id])
        digest = hashes.Hash(hashes.SHA256())
        digest.update(material.encode("utf-8"))
        return digest.finalize().hex()

    def get_or_derive(self, deriver: KeyDeriver, passphrase: str, desktop_id: str) -> PortalKey:
        """Return the cached key for a pairing, deriving it on first use."""
        validate_pairing_secret(passphrase, desktop_id)
        entry_id = self._entry_id(deriver, passphrase, desktop_id)

        with self._lock:
            key = self._keys.get(entry_id)
            if key is not None:
                return key
            entry_lock = self._locks.setdefault(entry_id, threading.Lock())

        with entry_lock:
            with self._lock:
                key = self._keys.get(entry_id)
            if key is None:
                try:
                    key = deriver.derive(passphrase, desktop_id)
                    with self._lock:
                        self._keys[entry_id] = key
                finally:
                    with self._lock:
                        self._locks.pop(entry_id, None)
            return key

    def clear(self) -> None:
        """Forget every cached key."""
        with self._lock:
            self._keys.clear()
            self._locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
