"""Redis sink connector."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from kvsink.config.models import RedisSinkConfig, validate
from kvsink.errors import (
    ConfigValidationError,
    PartialWriteError,
    SinkError,
    StoreConnectionError,
    StoreOperationError,
    TransformError,
)
from kvsink.sinks.base import (
    BatchReport,
    ConnectionStatus,
    RecordFailure,
    StatusHandler,
)
from kvsink.sinks.resolver import (
    Mutation,
    StoreOperation,
    operation_for,
    resolve_mutations,
)
from kvsink.sinks.transform import RecordTransform

logger = structlog.get_logger()


def create_client(config: RedisSinkConfig) -> Redis:
    """Build an asyncio Redis client from the connection settings."""
    return Redis(
        host=config.host,
        port=config.port,
        username=config.username or None,
        password=config.password.get_secret_value() or None,
        db=config.db,
        decode_responses=True,
    )


def _build_transform(config: RedisSinkConfig) -> RecordTransform:
    try:
        return RecordTransform(config)
    except TransformError as exc:
        raise ConfigValidationError(str(exc)) from exc


def _expiration_ms(ttl: timedelta) -> int:
    # PX takes whole milliseconds; keep sub-millisecond TTLs alive for 1 ms
    return max(1, ttl // timedelta(milliseconds=1))


class RedisSink:
    """Writes stream records to Redis as SET/LPUSH/DEL/LPOP commands.

    A single ``redis.asyncio.Redis`` client is shared by every collect call;
    its connection pool makes it safe to use from concurrent coroutines.
    """

    def __init__(
        self,
        config: RedisSinkConfig | None = None,
        *,
        sink_id: str = "redis",
    ) -> None:
        self._sink_id = sink_id
        self._config = config
        self._transform = _build_transform(config) if config is not None else None
        self._client: Redis | None = None

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def config(self) -> RedisSinkConfig:
        if self._config is None:
            msg = "RedisSink not provisioned, call provision() first"
            raise RuntimeError(msg)
        return self._config

    async def provision(self, props: Mapping[str, Any]) -> None:
        config = validate(props)
        self._transform = _build_transform(config)
        self._config = config
        logger.debug(
            "redis_sink.provisioned",
            sink_id=self.sink_id,
            addr=config.addr,
            key_mode=config.key_mode.value,
            data_type=config.data_type.value,
        )

    async def connect(self, on_status: StatusHandler) -> None:
        config = self.config
        logger.debug("redis_sink.connecting", sink_id=self.sink_id, addr=config.addr)
        client = create_client(config)
        try:
            await client.ping()
        except RedisError as exc:
            await client.aclose()
            on_status(ConnectionStatus.DISCONNECTED, str(exc))
            logger.error(
                "redis_sink.connect_failed",
                sink_id=self.sink_id,
                addr=config.addr,
                error=str(exc),
            )
            msg = f"cannot reach redis at {config.addr}: {exc}"
            raise StoreConnectionError(msg) from exc
        except BaseException:
            await client.aclose()
            raise
        if self._client is not None:
            await self._client.aclose()
        self._client = client
        on_status(ConnectionStatus.CONNECTED, "")
        logger.info(
            "redis_sink.connected",
            sink_id=self.sink_id,
            addr=config.addr,
            db=config.db,
        )

    async def ping(self, props: Mapping[str, Any]) -> None:
        config = validate(props)
        client = create_client(config)
        try:
            await client.ping()
        except RedisError as exc:
            msg = f"cannot reach redis at {config.addr}: {exc}"
            raise StoreConnectionError(msg) from exc
        finally:
            await client.aclose()
        logger.debug("redis_sink.ping_ok", sink_id=self.sink_id, addr=config.addr)

    async def collect(self, record: Mapping[str, Any]) -> None:
        client = self._require_client()
        assert self._transform is not None
        for item in self._transform.apply(record):
            mutations = resolve_mutations(self.config, item)
            await self._apply(client, mutations)

    async def collect_list(self, records: Iterable[Mapping[str, Any]]) -> BatchReport:
        self._require_client()
        report = BatchReport()
        for index, record in enumerate(records):
            report.total += 1
            try:
                await self.collect(record)
            except SinkError as exc:
                logger.error(
                    "redis_sink.record_failed",
                    sink_id=self.sink_id,
                    index=index,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                report.failures.append(RecordFailure(index=index, error=exc))
        if report.failures:
            logger.warning(
                "redis_sink.batch_partial",
                sink_id=self.sink_id,
                total=report.total,
                failed=len(report.failures),
            )
        return report

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("redis_sink.closed", sink_id=self.sink_id)

    async def health(self) -> dict[str, Any]:
        connected = False
        if self._client is not None:
            try:
                connected = bool(await self._client.ping())
            except RedisError:
                connected = False
        result: dict[str, Any] = {
            "sink_id": self.sink_id,
            "type": "redis",
            "status": "running" if connected else "stopped",
        }
        if self._config is not None:
            result["addr"] = self._config.addr
            result["db"] = self._config.db
            result["key_mode"] = self._config.key_mode.value
            result["data_type"] = self._config.data_type.value
        return result

    def _require_client(self) -> Redis:
        if self._client is None:
            msg = "RedisSink not connected, call connect() first"
            raise RuntimeError(msg)
        return self._client

    async def _apply(self, client: Redis, mutations: list[Mutation]) -> None:
        """Write every mutation; one failed key never stops the others."""
        if len(mutations) == 1:
            await self._write(client, mutations[0])
            return

        failures: list[StoreOperationError] = []
        for mutation in mutations:
            try:
                await self._write(client, mutation)
            except StoreOperationError as exc:
                logger.error(
                    "redis_sink.write_failed",
                    sink_id=self.sink_id,
                    key=exc.key,
                    operation=exc.operation,
                    error=str(exc.cause),
                )
                failures.append(exc)
        if failures:
            raise PartialWriteError(failures, attempted=len(mutations))

    async def _write(self, client: Redis, mutation: Mutation) -> None:
        config = self.config
        op = operation_for(mutation.rowkind, config.data_type)
        key = mutation.key
        try:
            if op == StoreOperation.SET:
                ttl = config.ttl
                if ttl is None:
                    await client.set(key, mutation.value)
                else:
                    await client.set(key, mutation.value, px=_expiration_ms(ttl))
            elif op == StoreOperation.LPUSH:
                await client.lpush(key, mutation.value)
            elif op == StoreOperation.LPOP:
                await client.lpop(key)
            else:
                await client.delete(key)
        except RedisError as exc:
            raise StoreOperationError(key, op.value, exc) from exc
        logger.debug(
            "redis_sink.write",
            sink_id=self.sink_id,
            operation=op.value,
            key=key,
            value=mutation.value,
        )
