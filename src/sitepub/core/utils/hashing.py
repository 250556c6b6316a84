"""SHA-256 hashing for fingerprints and cache checksums"""

import hashlib


def sha256_bytes(data: bytes) -> str:
    """Return the 64-char hex SHA-256 digest of raw bytes (fits the String(64) checksum column)."""
    return hashlib.sha256(data).hexdigest()


def sha256(text: str) -> str:
    """sha256_bytes over the UTF-8 encoding of text."""
    return sha256_bytes(text.encode("utf-8"))
