"""Exceptions raised by schema inference, encoding and decoding.

Every error carries the structural path at which it occurred, written as a
JSON pointer rooted at '#' (for example '#/orders/3/sku').
"""

from typing import Any

import jsonpointer


class AvroShapeError(Exception):
    """Base class for all avroshape errors."""

    def __init__(self, message: str, path: str = "#"):
        self.message = message
        self.path = path
        super().__init__(f"{message} at {path}")

    @property
    def pointer(self) -> str:
        """The path as a plain JSON pointer, without the leading '#'."""
        return self.path[1:] if self.path.startswith("#") else self.path

    def value_at(self, document: Any) -> Any:
        """The value the error points at inside a document, or MISSING if it is absent."""
        return jsonpointer.resolve_pointer(document, self.pointer, MISSING)


class InvalidSchemaError(AvroShapeError):
    """Raised when a schema uses constructs outside the supported type algebra."""


class InferenceError(AvroShapeError):
    """Raised when no schema can be inferred for the top-level shape of the input."""


class EncodingError(AvroShapeError):
    """Raised when a value cannot be written against the schema at a given path."""

    def __init__(self, path: str, expected: Any, actual: Any, message: str = ''):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"Expected {describe_type(expected)}, got {describe_value(actual)}"
        super().__init__(message, path)


class DecodingError(AvroShapeError):
    """Raised when binary input is truncated or malformed."""

    def __init__(self, offset: int, expected: Any, message: str = '', path: str = "#"):
        self.offset = offset
        self.expected = expected
        if not message:
            message = f"Cannot decode {describe_type(expected)}"
        super().__init__(f"{message} (byte offset {offset})", path)


class SchemaMismatchError(AvroShapeError):
    """Raised when a supplied schema disagrees with the schema or data of the payload."""

    def __init__(self, path: str, expected: Any, actual: Any, message: str = ''):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"Schema expects {describe_type(expected)}, payload has {describe_type(actual)}"
        super().__init__(message, path)


class _Missing:
    def __repr__(self):
        return '<missing>'


MISSING = _Missing()


def describe_type(schema: Any) -> str:
    """Short human readable rendering of a schema node for messages."""
    if isinstance(schema, str):
        return schema
    if isinstance(schema, dict):
        if 'logicalType' in schema:
            return f"{schema.get('type')}/{schema['logicalType']}"
        if schema.get('type') in ('record', 'enum', 'fixed'):
            return f"{schema.get('type')} '{schema.get('name')}'"
        return str(schema.get('type'))
    if isinstance(schema, list):
        return '[' + ', '.join(describe_type(s) for s in schema) + ']'
    return repr(schema)


def describe_value(value: Any) -> str:
    """Short human readable rendering of a value for messages."""
    if value is MISSING:
        return 'missing field'
    text = repr(value)
    if len(text) > 60:
        text = text[:57] + '...'
    return f"{type(value).__name__} {text}"
