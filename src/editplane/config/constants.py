"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
These are wire-format constraints shared by every changeset producer and consumer.

For configurable values, see models.py (ApplyConfig, LoggingConfig).
"""

# =============================================================================
# Digests
# =============================================================================

HASH_HEX_LEN = 16
"""Hex length of content digests (expected_old_hash, expected_file_hash, old_hash)."""

LINE_HASH_HEX_LEN = 12
"""Hex length of hashline anchor digests."""

DISPLAY_HASH_MIN_HEX_LEN = 8
"""Shortest hash accepted when stripping pasted ``N:hash|`` display prefixes."""

DISPLAY_HASH_MAX_HEX_LEN = 64
"""Longest hash accepted when stripping pasted ``N:hash|`` display prefixes."""

# =============================================================================
# Byte layout
# =============================================================================

UTF8_BOM = b"\xef\xbb\xbf"
"""UTF-8 byte-order mark; file_start targets insert after it."""

# =============================================================================
# Transactions
# =============================================================================

TRANSACTION_MODE_ALL_OR_NOTHING = "all_or_nothing"
"""The only supported transaction mode."""

TEMP_FILE_TAG = "editplane-tmp"
"""Marker embedded in sibling temp-file names used for atomic writes."""

# =============================================================================
# Config files
# =============================================================================

CONFIG_DIR_NAME = ".editplane"
"""Per-repository config directory."""

ENV_PREFIX = "EDITPLANE__"
"""Prefix for environment overrides (EDITPLANE__SECTION__KEY)."""
