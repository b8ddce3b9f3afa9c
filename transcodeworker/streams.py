"""Stream and consumer helpers shared by the worker."""

from __future__ import annotations

import logging
import socket
from typing import Any

import redis

logger = logging.getLogger(__name__)


def get_consumer_hostname() -> str:
    """Return the host name, or "unknown-host" when it cannot be read."""
    try:
        name = socket.gethostname()
    except OSError:
        return "unknown-host"
    return name or "unknown-host"


def ensure_consumer_group_exists(con: Any, stream_key: str, group_name: str) -> None:
    """Create the consumer group (and stream) from id 0; an existing group is fine."""
    try:
        con.xgroup_create(stream_key, group_name, id="0", mkstream=True)
    except redis.RedisError as exc:
        if "BUSYGROUP" in str(exc):
            logger.info(
                "Consumer group '%s' already exists for stream '%s'", group_name, stream_key
            )
            return
        logger.error(
            "Failed to create consumer group '%s' for stream '%s': %s",
            group_name,
            stream_key,
            exc,
        )
        raise
    logger.info(
        "Consumer group '%s' created (or already existed) for stream '%s'",
        group_name,
        stream_key,
    )