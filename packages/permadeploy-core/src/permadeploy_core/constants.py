"""Protocol-level constants shared across the publish pipeline."""

from __future__ import annotations

MIB = 1024 * 1024

# Carriers
INSCRIPTION_OUTPUT_SATS = 1
PLACEHOLDER_INPUT_SATS = 100_000_000
UTXO_FETCH_BUFFER_SATS = 100
DEFAULT_SATS_PER_KB = 1

# Size model used by the dry-run strategy
TX_BASE_SIZE = 10
TX_INPUT_SIZE = 148
TX_OUTPUT_SIZE = 34

# Addressing
CONTENT_PATH_PREFIX = "/content/"
OUTPOINT_SEPARATOR = "_"
CACHED_FILE_DELIMITER = "::*::"

# Chunking
DEFAULT_CHUNK_THRESHOLD = 5 * MIB
DEFAULT_CHUNK_SIZE = 10 * MIB
PROGRESSIVE_CHUNK_SCHEDULE = (1 * MIB, 1 * MIB, 2 * MIB, 3 * MIB, 5 * MIB)
MAX_PROGRESSIVE_CHUNK_SIZE = 5 * MIB
VIDEO_FILE_EXTENSIONS = (".mp4", ".mov", ".webm", ".avi", ".mkv", ".m4v")
CHUNK_MANIFEST_VERSION = "1.0"
REASSEMBLY_HELPER_FILENAME = "chunk-reassembly-sw.js"

# Publishing
DEFAULT_BATCH_SIZE = 10

# Deployment record
MANIFEST_FILENAME = "deployment-manifest.json"
MANIFEST_VERSION = "1.0.0"

# Version chain
MOCK_VERSIONING_TXID = "c0" * 32
DEFAULT_INSCRIPTION_VOUT = 0
VERSION_KEY_PREFIX = "version."
VERSION_MANIFEST_TYPE = "permadeploy-version-manifest"
DEFAULT_APP_NAME = "permadeploy"


def format_outpoint(txid: str, vout: int) -> str:
    return f"{txid}{OUTPOINT_SEPARATOR}{vout}"


def parse_outpoint(outpoint: str) -> tuple[str, int]:
    """Split ``txid_vout`` (or ``txid.vout``) into its parts.

    Raises ValueError if the string is not a valid outpoint.
    """
    separator = OUTPOINT_SEPARATOR if OUTPOINT_SEPARATOR in outpoint else "."
    txid, sep, vout = outpoint.rpartition(separator)
    if not sep or not txid or not vout.isdigit():
        raise ValueError(f"Invalid outpoint '{outpoint}': expected 'txid_vout'")
    return txid, int(vout)


def content_url_path(txid: str, vout: int) -> str:
    return f"{CONTENT_PATH_PREFIX}{format_outpoint(txid, vout)}"
