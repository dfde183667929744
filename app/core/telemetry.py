"""
Request telemetry: one compact log line per terminal request outcome.

Never carries raw issue text, raw client addresses, or secrets.
"""

import hashlib
import json
import logging
import time
from typing import Any

from app.core.config import TELEMETRY_SALT

logger = logging.getLogger(__name__)


def hash_identity(identity: str) -> str:
    """Salted, truncated sha256 of a client identity (8 hex chars)."""
    digest = hashlib.sha256((TELEMETRY_SALT + (identity or "")).encode("utf-8")).hexdigest()
    return digest[:8]


def record_event(
    *,
    identity: str,
    outcome: str,
    duration_ms: int,
    issue_len: int = 0,
    os: str = "",
    device: str = "",
    sources_count: int = 0,
    cache_hit: bool = False,
) -> dict[str, Any]:
    """Log one telemetry record and return it."""
    record = {
        "ts": int(time.time() * 1000),
        "ip_hash": hash_identity(identity),
        "issue_len": issue_len,
        "os": os,
        "device": device,
        "duration_ms": duration_ms,
        "sources_count": sources_count,
        "cache_hit": cache_hit,
        "outcome": outcome,
    }
    logger.info("[telemetry] %s", json.dumps(record))
    return record
