"""JSON serialization utilities."""

from __future__ import annotations

import base64
import dataclasses
import datetime
import enum
import json


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(obj).decode("utf-8")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def dumps(payload: object, *, indent: int | None = None) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=indent, default=json_default)


def to_jsonable(payload: object) -> object:
    """Round-trip ``payload`` through JSON so it only holds plain types."""
    return json.loads(dumps(payload))
