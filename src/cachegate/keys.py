"""Content-addressed cache key derivation.

Keys are SHA-256 hashes of ``schema_version:namespace:seed_parts`` where
the seed parts are joined with a reserved ``||`` separator, so identical
requests always resolve to the same entry and bumping the schema version
moves every request to a fresh key.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from cachegate.models import AnalysisRequest

FIELD_SEPARATOR = ":"
SEED_SEPARATOR = "||"


def derive_key(namespace: str, seed_parts: Sequence[str], schema_version: int) -> str:
    """Derive a deterministic cache key.

    Args:
        namespace: Logical namespace, typically the provider name.
        seed_parts: Ordered strings identifying the request content.
        schema_version: Version of the cached payload schema.

    Returns:
        A 64-character lowercase hex digest.
    """
    raw = FIELD_SEPARATOR.join(
        [str(schema_version), namespace, SEED_SEPARATOR.join(seed_parts)]
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def key_for_request(request: AnalysisRequest, schema_version: int) -> str:
    """Derive the cache key for a canonicalised :class:`AnalysisRequest`."""
    return derive_key(request.namespace, request.seed_parts(), schema_version)
