"""Record reshaping applied before mutation resolution.

Three sink options change what a record looks like before it reaches the
resolver, applied in this order:

- ``dataTemplate``: a Jinja2 template rendered with the record's fields as
  variables (the whole record is also available as ``record``). The output
  must be a JSON object, or an array of objects, which replaces the record.
- ``dataField``: the record is replaced by ``record[dataField]``. A mapping
  yields one record, a list of mappings yields several.
- ``fields``: each record is projected onto the listed fields; listed fields
  the record lacks come out as ``None``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import jinja2

from kvsink.config.models import RedisSinkConfig
from kvsink.errors import TransformError

Record = Mapping[str, Any]


def _as_records(value: Any, origin: str) -> list[Record]:
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, list) and all(isinstance(v, Mapping) for v in value):
        return list(value)
    msg = (
        f"{origin} must produce an object or a list of objects, "
        f"got {type(value).__name__}"
    )
    raise TransformError(msg)


class RecordTransform:
    """Compiled form of the transform options of one sink config."""

    def __init__(self, config: RedisSinkConfig) -> None:
        self._data_field = config.data_field
        self._fields = list(config.select_fields)
        self._template: jinja2.Template | None = None
        if config.data_template:
            env = jinja2.Environment(autoescape=False, keep_trailing_newline=False)
            try:
                self._template = env.from_string(config.data_template)
            except jinja2.TemplateSyntaxError as exc:
                msg = f"invalid dataTemplate: {exc}"
                raise TransformError(msg) from exc

    @property
    def is_identity(self) -> bool:
        return self._template is None and not self._data_field and not self._fields

    def apply(self, record: Record) -> list[Record]:
        """Reshape one incoming record into the record(s) to resolve."""
        if self.is_identity:
            return [record]

        records = [record]
        if self._template is not None:
            records = self._render(record)
        if self._data_field:
            records = [r for rec in records for r in self._extract(rec)]
        if self._fields:
            records = [{f: rec.get(f) for f in self._fields} for rec in records]
        return records

    def _render(self, record: Record) -> list[Record]:
        assert self._template is not None
        try:
            text = self._template.render({"record": record, **record})
        except Exception as exc:
            # expressions can raise any exception on unexpected record values
            msg = f"dataTemplate rendering failed: {exc}"
            raise TransformError(msg) from exc
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            msg = f"dataTemplate output is not valid JSON: {exc}"
            raise TransformError(msg) from exc
        return _as_records(parsed, "dataTemplate")

    def _extract(self, record: Record) -> list[Record]:
        if self._data_field not in record:
            msg = f"dataField '{self._data_field}' does not exist in record"
            raise TransformError(msg)
        return _as_records(record[self._data_field], f"dataField '{self._data_field}'")
