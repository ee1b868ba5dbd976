"""The scalar coercion table shared by inference, encoding and decoding.

Inference asks `scalar_type` which Avro type a value maps to and
`widen_types` how two observed types combine. The encoder asks `coerce`
to turn a value into the datum written for a given schema node, using the
same mapping, so that whatever inference widened the encoder can write.
The decoder reuses `coerce` to reconcile payload data with a supplied schema.
"""

# pylint: disable=too-many-return-statements, too-many-branches

import base64
import datetime
import json
import re
import uuid
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from avroshape.errors import EncodingError
from avroshape.options import ConversionOptions
from avroshape.schema_model import (LOCAL_TIMESTAMP_LOGICAL_TYPES, TIME_LOGICAL_TYPES,
                                    TIMESTAMP_LOGICAL_TYPES, AvroSchema, logical_type_of,
                                    primitive, type_name_of)
from avroshape.values import INT64_MAX, INT64_MIN, ValueKind, is_aware, kind_of

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

WIDEST_TYPE = "string"

INTEGER_PATTERN = re.compile(r'^[+-]?\d+$')
NUMBER_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')


def scalar_type(value: Any, kind: Optional[ValueKind] = None) -> AvroSchema:
    """The Avro type a scalar value maps to.

    Exact decimals map to string so that their digits survive unchanged;
    everything else maps to the Avro type that holds it without loss.
    """
    if kind is None:
        kind = kind_of(value)
    if kind == ValueKind.NULL:
        return "null"
    if kind == ValueKind.BOOL:
        return "boolean"
    if kind == ValueKind.INT:
        return "long"
    if kind == ValueKind.FLOAT:
        return "double"
    if kind in (ValueKind.DECIMAL, ValueKind.TEXT):
        return "string"
    if kind == ValueKind.TIMESTAMP:
        return primitive("long", "timestamp-micros" if is_aware(value) else "local-timestamp-micros")
    if kind == ValueKind.DATE:
        return primitive("int", "date")
    if kind == ValueKind.TIME:
        return primitive("long", "time-micros")
    if kind == ValueKind.BYTES:
        return "bytes"
    raise TypeError(f"{kind.value} is not a scalar kind")


def widen_types(a: AvroSchema, b: AvroSchema) -> AvroSchema:
    """Combine two scalar types observed at the same position.

    Identical types stay as they are; any disagreement widens to string,
    the one type every value can be written as.
    """
    if a == b:
        return a
    return WIDEST_TYPE


def to_text(value: Any) -> str:
    """Render any value as the text written for it at a string position."""
    kind = kind_of(value)
    if kind == ValueKind.TEXT:
        return value
    if kind == ValueKind.NULL:
        return 'null'
    if kind == ValueKind.BOOL:
        return 'true' if value else 'false'
    if kind == ValueKind.INT:
        return str(value)
    if kind == ValueKind.FLOAT:
        return repr(value)
    if kind == ValueKind.DECIMAL:
        if isinstance(value, int):
            return str(value)
        return format(value, 'f')
    if kind in (ValueKind.TIMESTAMP, ValueKind.DATE, ValueKind.TIME):
        return value.isoformat()
    if kind == ValueKind.BYTES:
        return base64.b64encode(bytes(value)).decode('ascii')
    return json.dumps(value, default=_json_default, ensure_ascii=False, separators=(',', ':'))


def _json_default(value: Any) -> Any:
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return to_text(value)


def coerce(value: Any, schema: AvroSchema, path: str, options: ConversionOptions) -> Any:
    """Convert a non-null value into the datum written for a primitive schema node.

    Args:
        value: The value to convert
        schema: A primitive schema node, possibly carrying a logical type
        path: JSON pointer of the value, for error reporting
        options: Job options (string parsing settings)

    Raises:
        EncodingError: If the value cannot be represented by the schema node
    """
    try:
        kind = kind_of(value)
    except TypeError:
        if isinstance(value, uuid.UUID):
            value, kind = str(value), ValueKind.TEXT
        else:
            raise EncodingError(path, schema, value) from None
    type_name = type_name_of(schema)
    logical_type = logical_type_of(schema)

    if kind == ValueKind.TEXT and options.parse_strings and type_name != 'string':
        parsed = _parse_text(value, type_name, logical_type, options)
        if parsed is not None:
            value, kind = parsed, kind_of(parsed)

    if type_name == 'null':
        if kind == ValueKind.NULL:
            return None
    elif type_name == 'string':
        if logical_type == 'uuid' and kind == ValueKind.TEXT:
            return value
        return to_text(value)
    elif type_name == 'boolean':
        if kind == ValueKind.BOOL:
            return value
    elif type_name in ('int', 'long'):
        if logical_type == 'date':
            if kind == ValueKind.DATE:
                return value
        elif logical_type in TIME_LOGICAL_TYPES:
            if kind == ValueKind.TIME:
                return value
        elif logical_type in TIMESTAMP_LOGICAL_TYPES:
            if kind == ValueKind.TIMESTAMP:
                if not is_aware(value):
                    return value.replace(tzinfo=options.tzinfo)
                return value
        elif logical_type in LOCAL_TIMESTAMP_LOGICAL_TYPES:
            if kind == ValueKind.TIMESTAMP:
                if is_aware(value):
                    return value.astimezone(options.tzinfo).replace(tzinfo=None)
                return value
        elif kind == ValueKind.INT:
            low, high = (INT32_MIN, INT32_MAX) if type_name == 'int' else (INT64_MIN, INT64_MAX)
            if low <= value <= high:
                return value
            raise EncodingError(path, schema, value, f"Integer {value} out of {type_name} range [{low}, {high}]")
    elif type_name in ('float', 'double'):
        if kind == ValueKind.FLOAT:
            return value
        if kind in (ValueKind.INT, ValueKind.DECIMAL):
            return float(value)
    elif type_name == 'bytes':
        if logical_type == 'decimal':
            if kind in (ValueKind.INT, ValueKind.DECIMAL, ValueKind.FLOAT):
                return _scaled_decimal(value, schema, path)
        elif kind == ValueKind.BYTES:
            return bytes(value)
        elif kind == ValueKind.TEXT:
            return value.encode('utf-8')
    raise EncodingError(path, schema, value)


def _scaled_decimal(value: Any, schema: dict, path: str) -> Decimal:
    scale = schema.get('scale', 0)
    decimal_value = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    scaled = decimal_value.quantize(Decimal(1).scaleb(-scale))
    if scaled != decimal_value:
        raise EncodingError(path, schema, value, f"Decimal {value} does not fit scale {scale}")
    return scaled


def _parse_text(text: str, type_name: str, logical_type: Optional[str],
                options: ConversionOptions) -> Any:
    """Parse text into a value for the given target type, or None when it does not parse."""
    stripped = text.strip()
    lowered = stripped.lower()
    if type_name == 'boolean':
        if lowered in (v.lower() for v in options.true_values):
            return True
        if lowered in (v.lower() for v in options.false_values):
            return False
        return None
    try:
        if logical_type == 'date':
            if options.date_format:
                return datetime.datetime.strptime(stripped, options.date_format).date()
            return datetime.date.fromisoformat(stripped)
        if logical_type in TIME_LOGICAL_TYPES:
            if options.time_format:
                return datetime.datetime.strptime(stripped, options.time_format).time()
            return datetime.time.fromisoformat(stripped)
        if logical_type in TIMESTAMP_LOGICAL_TYPES + LOCAL_TIMESTAMP_LOGICAL_TYPES:
            return _parse_datetime(stripped, logical_type, options)
    except ValueError:
        return None
    if options.decimal_separator != '.':
        stripped = stripped.replace(options.decimal_separator, '.')
    if type_name in ('int', 'long') and INTEGER_PATTERN.match(stripped):
        return int(stripped)
    if (type_name in ('float', 'double') or logical_type == 'decimal') and NUMBER_PATTERN.match(stripped):
        try:
            return Decimal(stripped)
        except InvalidOperation:
            return None
    return None


def _parse_datetime(text: str, logical_type: str, options: ConversionOptions) -> datetime.datetime:
    """Parse timestamp text; text without a zone is read in the job's time zone."""
    if options.datetime_format:
        value = datetime.datetime.strptime(text, options.datetime_format)
    else:
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        value = datetime.datetime.fromisoformat(text)
    if logical_type in TIMESTAMP_LOGICAL_TYPES and not is_aware(value):
        value = value.replace(tzinfo=options.tzinfo)
    return value

