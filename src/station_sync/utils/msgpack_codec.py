"""
msgpack_codec.py - Canonical MessagePack serialization.

MessagePack is used for serializing sync_queue payloads: the
replay description of each journaled mutation.

Canonicalization ensures identical payloads produce identical bytes.
Bound parameters that MessagePack has no native type for are
normalized first (dates to ISO text, decimals to float, UUIDs to text).
"""

import datetime
import decimal
import uuid
from typing import Any

import msgpack

from station_sync.errors import ValidationError


def _normalize(value: Any) -> Any:
    """msgpack ``default`` hook for common SQL parameter types."""
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, tuple):
        return list(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def pack_dict(data: dict[str, Any]) -> bytes:
    """
    Serialize a dictionary to canonical MessagePack.

    Keys are sorted alphabetically to ensure canonical representation.

    Raises:
        ValidationError: If data cannot be serialized
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"Expected dict, got {type(data).__name__}",
            field="data",
            value=data,
        )

    try:
        sorted_data = {k: data[k] for k in sorted(data.keys())}
        return msgpack.packb(sorted_data, use_bin_type=True, default=_normalize)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"Cannot serialize dict to MessagePack: {e}",
            field="data",
            value=str(data)[:100],
        ) from e


def unpack_dict(data: bytes) -> dict[str, Any]:
    """
    Deserialize a dictionary from MessagePack.

    Raises:
        ValidationError: If data cannot be deserialized or is not a dict
    """
    try:
        result = msgpack.unpackb(data, raw=False)
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise ValidationError(
            f"Cannot deserialize MessagePack: {e}",
            field="data",
            value=data[:50] if len(data) > 50 else data,
        ) from e

    if not isinstance(result, dict):
        raise ValidationError(
            f"Expected dict, got {type(result).__name__}",
            field="data",
            value=result,
        )

    return result
