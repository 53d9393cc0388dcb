"""Pydantic configuration models for the Redis sink."""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import timedelta
from enum import StrEnum
from typing import Any, Self

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from kvsink.errors import ConfigValidationError

DEFAULT_PORT = 6379

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-6,
    "us": 1e-3,
    "µs": 1e-3,
    "μs": 1e-3,
    "ms": 1.0,
    "s": 1000.0,
    "m": 60_000.0,
    "h": 3_600_000.0,
}
_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_DURATION_PART = re.compile(rf"({_NUMBER.pattern})(ns|us|µs|μs|ms|s|m|h)")


class KeyMode(StrEnum):
    """How record fields map onto store keys."""

    SINGLE = "single"
    MULTIPLE = "multiple"


class DataType(StrEnum):
    """Redis value type written by the sink."""

    STRING = "string"
    LIST = "list"


def _millis(ms: float, raw: Any) -> timedelta:
    try:
        return timedelta(milliseconds=ms)
    except (OverflowError, ValueError) as exc:
        msg = f"invalid duration '{raw}': out of range"
        raise ValueError(msg) from exc


def parse_duration(value: Any) -> timedelta:
    """Parse a duration option.

    Numbers are milliseconds. Strings use unit suffixes such as ``300ms``,
    ``10s``, ``1h30m`` or ``1.5h`` and may carry a leading sign. A bare
    numeric string is treated as milliseconds too.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        msg = "duration must be a number or a string, not a boolean"
        raise ValueError(msg)
    if isinstance(value, int | float):
        return _millis(value, value)
    if not isinstance(value, str):
        msg = f"duration must be a number or a string, got {type(value).__name__}"
        raise ValueError(msg)

    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if not text:
        msg = f"invalid duration '{value}'"
        raise ValueError(msg)
    if _NUMBER.fullmatch(text):
        return _millis(sign * float(text), value)

    total_ms = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total_ms += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        msg = f"invalid duration '{value}'"
        raise ValueError(msg)
    return _millis(sign * total_ms, value)


class RedisSinkConfig(BaseModel, frozen=True, populate_by_name=True):
    """Immutable per-sink settings, resolved once at provisioning time.

    Option names follow the stream engine's property surface (``keyType``,
    ``dataType``, ``rowkindField`` ...); the snake_case field names are
    accepted as well.
    """

    # -- connection ------------------------------------------------------------
    addr: str = f"localhost:{DEFAULT_PORT}"
    username: str = ""
    password: SecretStr = SecretStr("")
    db: int = Field(default=0, ge=0, le=15)

    # -- key / value resolution ------------------------------------------------
    key: str = ""
    field: str = ""
    key_mode: KeyMode = Field(default=KeyMode.SINGLE, alias="keyType")
    data_type: DataType = Field(default=DataType.STRING, alias="dataType")
    # <= 0 means no expiration
    expiration: timedelta = timedelta(milliseconds=-1)
    rowkind_field: str = Field(default="", alias="rowkindField")

    # -- record transform ------------------------------------------------------
    data_template: str = Field(default="", alias="dataTemplate")
    data_field: str = Field(default="", alias="dataField")
    select_fields: list[str] = Field(default_factory=list, alias="fields")

    @field_validator("expiration", mode="before")
    @classmethod
    def coerce_expiration(cls, v: Any) -> timedelta:
        return parse_duration(v)

    @field_validator("addr")
    @classmethod
    def validate_addr(cls, v: str) -> str:
        host, sep, port = v.rpartition(":")
        if not sep or (":" in host and not host.endswith("]")):
            # bare host, or an unbracketed IPv6 literal
            return v
        if not host or not port.isdigit() or not 0 < int(port) < 65536:
            msg = f"addr '{v}' must be host:port with a port in 1-65535"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_key_source(self) -> Self:
        """Single-key mode needs either a static key or a key field."""
        if self.key_mode == KeyMode.SINGLE and not self.key and not self.field:
            msg = "redis sink must have key or field when keyType is single"
            raise ValueError(msg)
        return self

    @property
    def host(self) -> str:
        return self._split_addr()[0]

    @property
    def port(self) -> int:
        return self._split_addr()[1]

    @property
    def ttl(self) -> timedelta | None:
        """The expiration to apply on SET, or None when disabled."""
        return self.expiration if self.expiration > timedelta(0) else None

    def _split_addr(self) -> tuple[str, int]:
        host, sep, port = self.addr.rpartition(":")
        if not sep or not port.isdigit() or (":" in host and not host.endswith("]")):
            return self.addr.strip("[]"), DEFAULT_PORT
        return host.strip("[]"), int(port)


def validate(props: Mapping[str, Any]) -> RedisSinkConfig:
    """Apply defaults to raw sink properties and check their invariants.

    Raises :class:`ConfigValidationError`; no partial config is returned.
    """
    try:
        return RedisSinkConfig.model_validate(dict(props))
    except ValidationError as exc:
        msg = f"Invalid redis sink config:\n{exc}"
        raise ConfigValidationError(msg) from exc
