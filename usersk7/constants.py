# Archive framing
ARCHIVE_EXTENSION = ".k7"
ARCHIVE_NAME_PREFIX = "Usersk7_"

# AES-256-CBC
IV_SIZE = 16
BLOCK_SIZE = 16
KEY_SIZE = 32
SALT_SIZE = 16

# Key derivation modes
KDF_RAW = "raw"
KDF_ARGON2ID = "argon2id"
KDF_MODES = (KDF_RAW, KDF_ARGON2ID)

# Argon2id parameters for the opt-in derivation mode
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4

# Compression: gzip container, maximum level
COMPRESS_LEVEL = 9
GZIP_WBITS = 31
AUTO_WBITS = 47  # accept gzip or zlib headers on decompress

# Import limits and log retention
DEFAULT_MAX_ARCHIVE_BYTES = 5 * 1024 * 1024  # 5 MiB
DEFAULT_LOG_TTL_SECONDS = 3600

# Metadata key holding the role/capability set (replace semantics on import)
DEFAULT_ROLES_KEY = "capabilities"
LEGACY_ROLES_KEY = "wp_capabilities"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
FILENAME_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
