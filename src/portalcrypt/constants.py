"""
portalcrypt - Global Constants and Configuration Values

This module defines all constants used throughout portalcrypt.
All magic numbers and configuration defaults are centralized here.

Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "portalcrypt"

# Key Derivation Constants
# Reduced from current guidance so that pure-JS mobile peers stay responsive.
PBKDF2_ITERATIONS = 10_000
MIN_RECOMMENDED_ITERATIONS = 600_000
KEY_LENGTH = 32  # 256 bits for AES-256-GCM
SALT_NAMESPACE = "orca-portal"
MAX_DESKTOP_ID_LENGTH = 256
KDF_PBKDF2 = "pbkdf2-sha256"
KDF_ARGON2ID = "argon2id"
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB
ARGON2_PARALLELISM = 1

# Envelope Constants
IV_LENGTH = 12  # 96 bits for AES-GCM
TAG_LENGTH = 16  # 128-bit GCM authentication tag
FINGERPRINT_LABEL = b"portalcrypt-key-fingerprint"

# Wire Fields
FIELD_TYPE = "type"
FIELD_TIMESTAMP = "timestamp"
FIELD_PAYLOAD = "payload"
FIELD_IV = "iv"
FIELD_CIPHERTEXT = "ciphertext"
FIELD_ENCRYPTED = "encrypted"  # legacy nested form
ROUTING_FIELDS = ("id", "sessionToken")

# Message Policy
POLICY_VERSION = 1

# File Paths
DEFAULT_DATA_DIR = "~/.portalcrypt"
CONFIG_FILENAME = "config.toml"
ENV_PREFIX = "PORTALCRYPT"
PASSPHRASE_ENV_VAR = "PORTALCRYPT_PASSPHRASE"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
