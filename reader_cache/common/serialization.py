"""
Serialization Utilities

This module converts cache payloads to and from their stored string form.
The codec is chosen by an explicit ``ValueType`` tag: the writer records the
tag it used in the entry metadata and the reader either asks for a tag or
falls back to the recorded one.
"""

import json
import base64
import hashlib
import datetime
import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple
from dataclasses import is_dataclass, asdict

from reader_cache.common.exceptions import SerializationError

logger = logging.getLogger(__name__)

WRAPPED_DATA_KEY = "data"


class ValueType(Enum):
    """Declared payload types used to select a codec."""
    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    JSON = "json"
    OBJECT = "object"
    BYTES = "bytes"
    ANY = "any"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["ValueType"]:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


def to_json_safe(obj: Any) -> Any:
    """
    Recursively convert an object into JSON-compatible values.

    Datetimes, dates and timestamp-like objects (anything exposing
    ``to_datetime()``) become ISO-8601 strings, enums their value, dataclasses
    and objects with ``to_dict()`` plain dicts. Unknown objects are returned
    unchanged so that ``json.dumps`` reports them.

    Args:
        obj: The object to convert

    Returns:
        JSON-compatible representation
    """
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj

    if isinstance(obj, (datetime.datetime, datetime.date, datetime.time)):
        return obj.isoformat()

    if isinstance(obj, Enum):
        return to_json_safe(obj.value)

    if isinstance(obj, Decimal):
        return float(obj)

    if isinstance(obj, (bytes, bytearray)):
        return base64.b64encode(bytes(obj)).decode("ascii")

    if isinstance(obj, dict):
        return {str(key): to_json_safe(value) for key, value in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_json_safe(item) for item in obj]

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_json_safe(asdict(obj))

    to_datetime = getattr(obj, "to_datetime", None)
    if callable(to_datetime):
        return to_datetime().isoformat()

    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_json_safe(to_dict())

    return obj


def infer_value_type(data: Any) -> ValueType:
    """Pick the codec a value is written with."""
    # bool before int: bool is an int subclass
    if isinstance(data, bool):
        return ValueType.BOOL
    if isinstance(data, str):
        return ValueType.STRING
    if isinstance(data, int):
        return ValueType.INT
    if isinstance(data, float):
        return ValueType.FLOAT
    if isinstance(data, (bytes, bytearray)):
        return ValueType.BYTES
    if isinstance(data, (dict, list, tuple)):
        return ValueType.JSON
    return ValueType.OBJECT


def encode_value(data: Any, value_type: Optional[ValueType] = None) -> Tuple[str, ValueType]:
    """
    Encode a value into its stored string form.

    Serialization failures never propagate: the value is stored as its
    ``str()`` representation and tagged as a string.

    Args:
        data: Value to encode
        value_type: Codec to use; inferred from the value when omitted

    Returns:
        Tuple of (payload string, value type used)
    """
    if data is None:
        return "null", ValueType.ANY

    value_type = value_type or infer_value_type(data)

    try:
        if value_type == ValueType.STRING:
            return data if isinstance(data, str) else str(data), ValueType.STRING
        if value_type == ValueType.BYTES:
            return base64.b64encode(bytes(data)).decode("ascii"), ValueType.BYTES
        if value_type == ValueType.OBJECT:
            return json.dumps({WRAPPED_DATA_KEY: to_json_safe(data)}), ValueType.OBJECT
        return json.dumps(to_json_safe(data)), value_type
    except (TypeError, ValueError) as e:
        logger.warning(f"Falling back to string representation for {type(data).__name__}: {e}")
        return str(data), ValueType.STRING


def decode_value(payload: Optional[str], value_type: ValueType = ValueType.ANY) -> Any:
    """
    Decode a stored payload.

    Args:
        payload: Stored string
        value_type: Codec to decode with

    Returns:
        Decoded value, the raw string when a string is acceptable, else None
    """
    if payload is None:
        return None

    if value_type == ValueType.STRING:
        return payload

    if value_type == ValueType.BYTES:
        try:
            return base64.b64decode(payload.encode("ascii"), validate=True)
        except (ValueError, UnicodeEncodeError):
            logger.warning("Stored payload is not valid base64")
            return None

    try:
        decoded = json.loads(payload)
    except (TypeError, ValueError):
        if value_type == ValueType.ANY:
            return payload
        logger.debug(f"Payload could not be parsed as {value_type.value}")
        return None

    if value_type == ValueType.OBJECT:
        if isinstance(decoded, dict) and WRAPPED_DATA_KEY in decoded:
            return decoded[WRAPPED_DATA_KEY]
        return decoded

    try:
        if value_type == ValueType.INT:
            return int(decoded)
        if value_type == ValueType.FLOAT:
            return float(decoded)
        if value_type == ValueType.BOOL:
            if isinstance(decoded, str):
                return decoded.lower() == "true"
            return bool(decoded)
    except (TypeError, ValueError):
        return None

    if value_type == ValueType.JSON and not isinstance(decoded, (dict, list)):
        return None

    return decoded


def content_hash(data: Any) -> Optional[str]:
    """
    SHA-256 of the canonical JSON form of ``data``.

    Returns None when the value cannot be represented as JSON.
    """
    try:
        canonical = json.dumps(to_json_safe(data), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return None
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_json(obj: Any, pretty: bool = False) -> str:
    """
    Serialize an object to a JSON string.

    Raises:
        SerializationError: If the object has no JSON representation
    """
    try:
        return json.dumps(to_json_safe(obj), indent=2 if pretty else None, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"cannot encode {type(obj).__name__}", e) from e


def from_json(json_str: str) -> Any:
    """
    Parse a JSON string.

    Raises:
        SerializationError: If the string is not valid JSON
    """
    try:
        return json.loads(json_str)
    except (TypeError, ValueError) as e:
        raise SerializationError("invalid JSON document", e) from e
