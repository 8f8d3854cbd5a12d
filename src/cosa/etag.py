"""Content hashes used as optimistic concurrency tokens."""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Mapping
from typing import Any

from bson import json_util


def canonical_json(document: Mapping[str, Any]) -> str:
    """Serialize a document deterministically, excluding its current etag."""

    payload = {key: value for key, value in document.items() if key != "_etag"}
    return json_util.dumps(payload, sort_keys=True, separators=(",", ":"))


def compute_etag(document: Mapping[str, Any]) -> str:
    """Return a strong etag such as ``"1f-Bf6Vq..."`` for ``document``."""

    body = canonical_json(document).encode("utf-8")
    digest = base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")[:27]
    return f'"{len(body):x}-{digest}"'


__all__ = ["canonical_json", "compute_etag"]
