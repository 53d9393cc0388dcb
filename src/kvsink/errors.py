"""Exception hierarchy for the Redis sink."""

from __future__ import annotations


class SinkError(Exception):
    """Base class for every error raised by the sink."""


class ConfigValidationError(SinkError, ValueError):
    """Raised when sink properties fail validation."""


class StoreConnectionError(SinkError):
    """Raised when the store cannot be reached at connect or ping time."""


class RecordError(SinkError):
    """A single record could not be resolved into mutations."""


class MissingFieldError(RecordError):
    """The configured key field is absent from the record."""

    def __init__(self, field: str) -> None:
        super().__init__(f"field '{field}' does not exist in record")
        self.field = field


class KeyConversionError(RecordError):
    """The key field value cannot be converted to a string."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(
            f"key field '{field}' must be a string or convertible to one, "
            f"got {type(value).__name__}"
        )
        self.field = field
        self.value = value


class InvalidRowKindError(RecordError):
    """The rowkind field holds a non-string or unrecognized value."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(f"invalid rowkind {value!r} in field '{field}'")
        self.field = field
        self.value = value


class TransformError(RecordError):
    """dataTemplate / dataField / fields could not be applied to a record."""


class StoreOperationError(SinkError):
    """A store command failed for one key."""

    def __init__(self, key: str, operation: str, cause: Exception) -> None:
        super().__init__(f"{operation} {key} failed: {cause}")
        self.key = key
        self.operation = operation
        self.cause = cause


class PartialWriteError(SinkError):
    """Some of the writes derived from one multi-key record failed."""

    def __init__(self, failures: list[StoreOperationError], attempted: int) -> None:
        keys = ", ".join(f.key for f in failures)
        super().__init__(f"{len(failures)} of {attempted} writes failed: {keys}")
        self.failures = failures
        self.attempted = attempted
