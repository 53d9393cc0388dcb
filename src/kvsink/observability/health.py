"""Health probes for the key-value store."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from kvsink.errors import ConfigValidationError, StoreConnectionError
from kvsink.sinks.redis import RedisSink

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == Status.HEALTHY


async def check_store(props: Mapping[str, Any]) -> ComponentHealth:
    """Probe the store described by raw sink properties.

    Runs the sink's stateless ping, so the config is validated first and the
    probe connection is always closed.
    """
    addr = str(props.get("addr", "localhost:6379"))
    try:
        await RedisSink().ping(props)
    except ConfigValidationError as exc:
        return ComponentHealth(
            name="config", status=Status.UNHEALTHY, detail=str(exc)
        )
    except StoreConnectionError as exc:
        logger.warning("health.store_unreachable", addr=addr, error=str(exc))
        return ComponentHealth(
            name="redis", status=Status.UNHEALTHY, detail=str(exc)
        )
    return ComponentHealth(
        name="redis", status=Status.HEALTHY, detail=f"PONG from {addr}"
    )
