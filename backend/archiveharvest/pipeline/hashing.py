from __future__ import annotations

import hashlib
from pathlib import Path

# Length of the hex prefix used as a record id.
ITEM_ID_LENGTH = 32


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def sha256_file(path: Path, *, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def item_id_from_digest(digest: str) -> str:
    return digest[:ITEM_ID_LENGTH]


def item_id_for_url(canonical_url: str) -> str:
    """Stable record id for a remote item: truncated SHA-256 of its canonical URL."""
    return item_id_from_digest(sha256_text(canonical_url))
