"""Encodes documents to Avro binary against a schema.

Each document is first prepared against the schema: every declared field is
looked up (by its original name when the schema records one in 'altnames'),
missing nullable fields become explicit nulls, and scalars go through the
coercion table shared with schema inference. The prepared datum is then
written by fastavro, either as a single schemaless datum or into an Avro
object container file.
"""

import io
import logging
from collections.abc import Mapping
from typing import Any, BinaryIO, Iterable, Iterator, Optional

import fastavro
from fastavro.schema import SchemaParseException, UnknownType

from avroshape.coercion import coerce
from avroshape.errors import MISSING, EncodingError, InvalidSchemaError, describe_value
from avroshape.options import ConversionOptions, OnBadRecords
from avroshape.schema_inference import pointer_segment
from avroshape.schema_model import (AvroSchema, altname, check_schema, is_nullable,
                                    non_null_type, type_name_of)

logger = logging.getLogger(__name__)


def parse_avro_schema(schema: AvroSchema) -> Any:
    """Parse a schema with fastavro, reporting failures as InvalidSchemaError."""
    try:
        return fastavro.parse_schema(schema)
    except (SchemaParseException, UnknownType, ValueError, TypeError) as e:
        raise InvalidSchemaError(f"Invalid Avro schema: {e}") from e


class AvroEncoder:
    """Encodes documents against one Avro schema.

    The encoder holds only the schema and the job options, neither of which
    it modifies, so one instance can serve concurrent workers.
    """

    def __init__(self, schema: AvroSchema, options: Optional[ConversionOptions] = None):
        """Initialize the encoder.

        Args:
            schema: Avro record schema, inferred or supplied
            options: Job options

        Raises:
            InvalidSchemaError: If the schema is outside the supported type algebra
        """
        self.schema = schema
        self.options = options or ConversionOptions()
        self.named_types = check_schema(schema)
        self.parsed_schema = parse_avro_schema(schema)

    def prepare(self, document: Any) -> Any:
        """Prepares a document for writing.

        Returns:
            The datum fastavro writes for the document

        Raises:
            EncodingError: If the document does not fit the schema
        """
        return self._prepare(document, self.schema, '', "#")

    def _prepare(self, value: Any, schema: AvroSchema, namespace: str, path: str) -> Any:
        if isinstance(schema, list):
            member = non_null_type(schema)
            if value is None or self._is_null_text(value, member):
                if is_nullable(schema):
                    return None
                raise EncodingError(path, schema, value)
            if member == "null":
                raise EncodingError(path, schema, value)
            return self._prepare(value, member, namespace, path)

        resolved, inner_namespace = self.named_types.resolve(schema, namespace)
        schema_type = type_name_of(resolved)
        if schema_type == 'record':
            return self._prepare_record(value, resolved, inner_namespace, path)
        if schema_type == 'array':
            if not isinstance(value, (list, tuple)):
                raise EncodingError(path, resolved, value)
            items = resolved.get('items', 'null')
            return [self._prepare(item, items, inner_namespace, f"{path}/{i}") for i, item in enumerate(value)]
        if value is None:
            if schema_type == 'null':
                return None
            raise EncodingError(path, resolved, value)
        return coerce(value, resolved, path, self.options)

    def _prepare_record(self, value: Any, schema: dict, namespace: str, path: str) -> dict:
        if not isinstance(value, Mapping):
            raise EncodingError(path, schema, value)
        datum = {}
        known = set()
        fields = schema.get('fields', [])
        # original names claimed by fields; an Avro name in this set belongs to another field
        claimed = {altname(f, self.options.altnames_key) for f in fields}
        for field in fields:
            field_name = field['name']
            key = altname(field, self.options.altnames_key)
            field_type = field.get('type', 'null')
            if key in value:
                known.add(key)
            elif field_name not in claimed and field_name in value:
                key = field_name
                known.add(key)
            elif is_nullable(field_type):
                datum[field_name] = None
                continue
            elif 'default' in field:
                datum[field_name] = field['default']
                continue
            else:
                raise EncodingError(f"{path}/{pointer_segment(key)}", field_type, MISSING,
                                    f"Missing required field '{key}'")
            datum[field_name] = self._prepare(value[key], field_type, namespace, f"{path}/{pointer_segment(key)}")
        if self.options.strict_schema:
            for key in value:
                if key not in known:
                    raise EncodingError(f"{path}/{pointer_segment(str(key))}", schema, value[key],
                                        f"Field '{key}' is not declared in record '{schema.get('name')}'")
        return datum

    def _is_null_text(self, value: Any, member: AvroSchema) -> bool:
        """True if a text value stands for null under the string parsing options."""
        if not self.options.parse_strings or not isinstance(value, str):
            return False
        if type_name_of(member) == 'string':
            return False
        return value.strip() in self.options.null_values

    def encode_record(self, document: Any) -> bytes:
        """Encodes one document as a schemaless Avro binary datum.

        The same document always encodes to the same bytes.

        Raises:
            EncodingError: If the document does not fit the schema
        """
        datum = self.prepare(document)
        buffer = io.BytesIO()
        try:
            fastavro.schemaless_writer(buffer, self.parsed_schema, datum)
        except (ValueError, TypeError, AttributeError) as e:
            raise EncodingError("#", self.schema, document, f"Avro writer rejected the record: {e}") from e
        return buffer.getvalue()

    def encode_records(self, documents: Iterable[Any]) -> Iterator[bytes]:
        """Encodes documents one by one as separate schemaless datums, applying on_bad_records."""
        for index, datum in enumerate(self._prepared(documents)):
            buffer = io.BytesIO()
            try:
                fastavro.schemaless_writer(buffer, self.parsed_schema, datum)
            except (ValueError, TypeError, AttributeError) as e:
                raise EncodingError("#", self.schema, datum, f"Avro writer rejected record {index}: {e}") from e
            yield buffer.getvalue()

    def _prepared(self, documents: Iterable[Any]) -> Iterator[Any]:
        for index, document in enumerate(documents):
            try:
                yield self.prepare(document)
            except EncodingError as e:
                if self.options.on_bad_records == OnBadRecords.ERROR:
                    raise
                if self.options.on_bad_records == OnBadRecords.WARN:
                    logger.warning("Skipping record %d: %s (found %s)", index, e, describe_value(e.value_at(document)))

    def encode(self, documents: Iterable[Any], fo: BinaryIO) -> int:
        """Writes documents to an Avro object container file.

        Args:
            documents: Records to write
            fo: Writable binary stream

        Returns:
            Number of records written
        """
        count = 0

        def counted():
            nonlocal count
            for datum in self._prepared(documents):
                count += 1
                yield datum

        try:
            fastavro.writer(fo, self.schema, counted(),
                            codec=self.options.codec,
                            sync_interval=self.options.sync_interval,
                            sync_marker=self.options.sync_marker)
        except (ValueError, TypeError, AttributeError) as e:
            raise EncodingError("#", self.schema, None, f"Avro writer failed after {count} records: {e}") from e
        logger.debug("Encoded %d records", count)
        return count

    def encode_to_bytes(self, documents: Iterable[Any]) -> bytes:
        """Writes documents to an in-memory Avro object container file."""
        buffer = io.BytesIO()
        self.encode(documents, buffer)
        return buffer.getvalue()


def encode(schema: AvroSchema, documents: Iterable[Any], options: Optional[ConversionOptions] = None) -> bytes:
    """Encodes documents into an Avro object container file.

    Args:
        schema: Avro record schema
        documents: Records to encode
        options: Job options

    Returns:
        The container file bytes
    """
    return AvroEncoder(schema, options).encode_to_bytes(documents)
