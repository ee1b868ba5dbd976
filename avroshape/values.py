"""The interchange value model.

A document is a tree of plain Python objects. The set of admissible objects
is closed; `kind_of` classifies each one into exactly one ValueKind and
rejects everything else.

    None                        NULL
    bool                        BOOL
    int (signed 64-bit range)   INT
    float                       FLOAT
    Decimal, int out of range   DECIMAL
    str                         TEXT
    datetime                    TIMESTAMP
    date                        DATE
    time                        TIME
    bytes, bytearray            BYTES
    list, tuple                 LIST
    Mapping with str keys       STRUCT

Stages never mutate the values they are handed.
"""

import datetime
from collections.abc import Mapping
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Union

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

Value = Union[None, bool, int, float, Decimal, str, datetime.datetime, datetime.date,
              datetime.time, bytes, List['Value'], Dict[str, 'Value']]


class ValueKind(Enum):
    """Kinds of interchange values."""
    NULL = 'null'
    BOOL = 'bool'
    INT = 'int'
    FLOAT = 'float'
    DECIMAL = 'decimal'
    TEXT = 'text'
    TIMESTAMP = 'timestamp'
    DATE = 'date'
    TIME = 'time'
    BYTES = 'bytes'
    LIST = 'list'
    STRUCT = 'struct'


def kind_of(value: Any) -> ValueKind:
    """Classify a value.

    Raises:
        TypeError: If the object is not an interchange value
    """
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int and datetime of date, so order matters
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        if INT64_MIN <= value <= INT64_MAX:
            return ValueKind.INT
        return ValueKind.DECIMAL
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, Decimal):
        return ValueKind.DECIMAL
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, datetime.datetime):
        return ValueKind.TIMESTAMP
    if isinstance(value, datetime.date):
        return ValueKind.DATE
    if isinstance(value, datetime.time):
        return ValueKind.TIME
    if isinstance(value, (bytes, bytearray)):
        return ValueKind.BYTES
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    if isinstance(value, Mapping):
        return ValueKind.STRUCT
    raise TypeError(f"Unsupported value type {type(value).__name__}")


def is_aware(value: datetime.datetime) -> bool:
    """True if the timestamp denotes an instant rather than a local wall-clock time."""
    return value.tzinfo is not None and value.tzinfo.utcoffset(value) is not None
