"""Decodes Avro binary back into documents.

Decoding is lazy: records are produced one at a time as the caller pulls
them. The raw datums come from fastavro using the writer schema found in
the payload; each datum is then reconciled with the schema the caller
supplied (or the writer schema itself) so that records come back with the
schema's fields, in schema order, keyed by their original names.

Errors are surfaced one at a time. `AvroDecoder.results` yields a
DecodeResult per record, failed ones included, and leaves the policy to the
caller; `AvroDecoder.decode` applies the on_bad_records option instead.
A DecodingError for truncated or corrupt bytes ends the sequence. Without
strict_unknown_fields, a record that cannot be read as the supplied schema
is reported as a DecodingError for that record only; SchemaMismatchError is
reserved for strict mode.
"""

# pylint: disable=too-many-branches

import io
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, BinaryIO, Iterable, Iterator, Optional

import fastavro

from avroshape.avroencoder import parse_avro_schema
from avroshape.coercion import coerce
from avroshape.errors import (MISSING, AvroShapeError, DecodingError, EncodingError,
                              SchemaMismatchError, describe_type)
from avroshape.options import ConversionOptions, OnBadRecords
from avroshape.schema_inference import pointer_segment
from avroshape.schema_model import (PASSTHROUGH_TYPES, AvroSchema, NamedTypes, altname,
                                    check_schema, fullname, is_nullable, logical_type_of,
                                    non_null_type, type_name_of)

logger = logging.getLogger(__name__)


@dataclass
class DecodeResult:
    """Outcome of decoding one record."""
    value: Any = None
    error: Optional[AvroShapeError] = None
    offset: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _decoding_error(offset: int, expected: Any, message: str, cause: Exception) -> DecodingError:
    error = DecodingError(offset, expected, f"{message}: {cause}")
    error.__cause__ = cause
    return error


def _tell(fo: Any, fallback: int) -> int:
    try:
        return fo.tell()
    except (AttributeError, OSError):
        return fallback


class AvroDecoder:
    """Decodes Avro binary against a schema."""

    def __init__(self, schema: Optional[AvroSchema] = None, options: Optional[ConversionOptions] = None):
        """Initialize the decoder.

        Args:
            schema: Schema the documents are read as. When omitted, container
                files are read with the writer schema they carry.
            options: Job options; strict_unknown_fields, on_bad_records and
                altnames_key are used

        Raises:
            InvalidSchemaError: If the supplied schema is outside the supported type algebra
        """
        self.schema = schema
        self.options = options or ConversionOptions()
        self.named_types = check_schema(schema) if schema is not None else None
        self.parsed_schema = parse_avro_schema(schema) if schema is not None else None

    def results(self, fo: BinaryIO) -> Iterator[DecodeResult]:
        """Decodes an Avro object container file record by record.

        Yields:
            One DecodeResult per record. A result carrying a DecodingError for
            unreadable bytes, or a SchemaMismatchError raised by the strict
            schema check, is the last one. Records that cannot be read as the
            supplied schema carry a DecodingError when strict_unknown_fields
            is off and a SchemaMismatchError when it is on.
        """
        try:
            blocks = fastavro.block_reader(fo)
            writer_schema = json.loads(blocks.metadata["avro.schema"])
        except Exception as e:  # pylint: disable=broad-except
            yield DecodeResult(error=_decoding_error(0, "avro container header", "Cannot read container header", e))
            return

        if self.schema is None:
            reader = _Reconciler(writer_schema, NamedTypes(writer_schema), self.options, strict=False)
        else:
            reader = _Reconciler(self.schema, self.named_types, self.options,
                                 strict=self.options.strict_unknown_fields)
            if self.options.strict_unknown_fields:
                try:
                    check_compatible(writer_schema, self.schema)
                except SchemaMismatchError as e:
                    yield DecodeResult(error=e)
                    return

        block_iterator = iter(blocks)
        position = _tell(fo, 0)
        while True:
            try:
                block = next(block_iterator)
            except StopIteration:
                return
            except Exception as e:  # pylint: disable=broad-except
                yield DecodeResult(error=_decoding_error(_tell(fo, position), "avro data block",
                                                        "Cannot read data block", e), offset=position)
                return
            position = block.offset + block.size
            datums = iter(block)
            for index in range(block.num_records):
                try:
                    datum = next(datums)
                except Exception as e:  # pylint: disable=broad-except
                    yield DecodeResult(error=_decoding_error(
                        block.offset, writer_schema, f"Cannot decode record {index} of block", e), offset=block.offset)
                    return
                yield reader.result(datum, block.offset)

    def decode(self, fo: BinaryIO) -> Iterator[Any]:
        """Decodes an Avro object container file into documents, applying on_bad_records.

        Raises:
            DecodingError: On truncated or corrupt input when on_bad_records is ERROR
            SchemaMismatchError: In strict mode, when the supplied schema disagrees
                with the payload and on_bad_records is ERROR
        """
        return self._apply_policy(self.results(fo))

    def decode_record(self, data: bytes) -> Any:
        """Decodes one schemaless Avro datum written with the supplied schema.

        Raises:
            DecodingError: If the bytes are truncated, corrupt or followed by trailing
                bytes, or cannot be read as the schema outside strict mode
            SchemaMismatchError: In strict mode, if the datum cannot be read as the schema
        """
        result = self._record_result(data, 0)
        if result.error is not None:
            raise result.error
        return result.value

    def record_results(self, records: Iterable[bytes]) -> Iterator[DecodeResult]:
        """Decodes independently framed schemaless datums.

        Every record is delimited, so a bad record does not end the sequence.
        The offset of each result is the position of the record in the
        concatenated input.
        """
        offset = 0
        for data in records:
            yield self._record_result(data, offset)
            offset += len(data)

    def decode_records(self, records: Iterable[bytes]) -> Iterator[Any]:
        """Decodes independently framed schemaless datums, applying on_bad_records."""
        return self._apply_policy(self.record_results(records))

    def _record_result(self, data: bytes, offset: int) -> DecodeResult:
        if self.parsed_schema is None:
            raise ValueError("Decoding schemaless records requires a schema")
        buffer = io.BytesIO(data)
        try:
            datum = fastavro.schemaless_reader(buffer, self.parsed_schema, None)
        except Exception as e:  # pylint: disable=broad-except
            return DecodeResult(error=_decoding_error(offset + buffer.tell(), self.schema,
                                                     "Cannot decode record", e), offset=offset)
        if buffer.tell() != len(data):
            return DecodeResult(error=DecodingError(offset + buffer.tell(), self.schema,
                                                    f"{len(data) - buffer.tell()} trailing bytes after record"),
                                offset=offset)
        reader = _Reconciler(self.schema, self.named_types, self.options, strict=self.options.strict_unknown_fields)
        return reader.result(datum, offset)

    def _apply_policy(self, results: Iterator[DecodeResult]) -> Iterator[Any]:
        for index, result in enumerate(results):
            if result.ok:
                yield result.value
                continue
            if self.options.on_bad_records == OnBadRecords.ERROR:
                raise result.error
            if self.options.on_bad_records == OnBadRecords.WARN:
                logger.warning("Skipping record %d: %s", index, result.error)


class _Reconciler:
    """Turns raw fastavro datums into documents shaped by a schema."""

    def __init__(self, schema: AvroSchema, named_types: NamedTypes, options: ConversionOptions, strict: bool):
        self.schema = schema
        self.named_types = named_types
        self.options = options
        self.strict = strict

    def result(self, datum: Any, offset: int) -> DecodeResult:
        """Reconcile one datum; mismatches are SchemaMismatchError only in strict mode."""
        try:
            return DecodeResult(value=self.to_value(datum, self.schema, '', "#"), offset=offset)
        except SchemaMismatchError as e:
            if self.strict:
                return DecodeResult(error=e, offset=offset)
            error = DecodingError(offset, e.expected, f"Cannot read record as the schema: {e.message}", e.path)
            error.__cause__ = e
            return DecodeResult(error=error, offset=offset)

    def to_value(self, datum: Any, schema: AvroSchema, namespace: str, path: str) -> Any:
        if isinstance(schema, list):
            if datum is None:
                if is_nullable(schema):
                    return None
                raise SchemaMismatchError(path, schema, "null")
            member = non_null_type(schema)
            if member == "null":
                raise SchemaMismatchError(path, schema, type(datum).__name__)
            return self.to_value(datum, member, namespace, path)

        resolved, inner_namespace = self.named_types.resolve(schema, namespace)
        schema_type = type_name_of(resolved)
        if schema_type == 'record':
            return self._record(datum, resolved, inner_namespace, path)
        if schema_type == 'array':
            if not isinstance(datum, list):
                raise SchemaMismatchError(path, resolved, type(datum).__name__)
            items = resolved.get('items', 'null')
            return [self.to_value(item, items, inner_namespace, f"{path}/{i}") for i, item in enumerate(datum)]
        if schema_type in PASSTHROUGH_TYPES:
            if self.strict:
                raise SchemaMismatchError(path, resolved, schema_type, f"Unknown type '{schema_type}'")
            return datum
        if datum is None:
            if schema_type == 'null':
                return None
            raise SchemaMismatchError(path, resolved, "null")
        try:
            value = coerce(datum, resolved, path, self.options)
        except EncodingError as e:
            raise SchemaMismatchError(path, resolved, type(datum).__name__) from e
        if isinstance(value, bytearray):
            value = bytes(value)
        return value

    def _record(self, datum: Any, schema: dict, namespace: str, path: str) -> dict:
        if not isinstance(datum, dict):
            raise SchemaMismatchError(path, schema, type(datum).__name__)
        value = {}
        known = set()
        for field in schema.get('fields', []):
            key = altname(field, self.options.altnames_key)
            field_type = field.get('type', 'null')
            source = next((n for n in [field['name']] + field.get('aliases', []) if n in datum), None)
            if source is None:
                if is_nullable(field_type):
                    value[key] = None
                elif 'default' in field:
                    value[key] = field['default']
                else:
                    raise SchemaMismatchError(f"{path}/{pointer_segment(key)}", field_type, MISSING,
                                              f"Field '{key}' is missing from the payload")
                continue
            known.add(source)
            value[key] = self.to_value(datum[source], field_type, namespace, f"{path}/{pointer_segment(key)}")
        for name in datum:
            if name in known:
                continue
            if self.strict:
                raise SchemaMismatchError(f"{path}/{pointer_segment(name)}", schema, name,
                                          f"Unknown field '{name}' for record '{schema.get('name')}'")
            logger.debug("Dropping field %s/%s unknown to the schema", path, name)
        return value


def check_compatible(writer_schema: AvroSchema, reader_schema: AvroSchema) -> None:
    """Checks that data written with one schema reads as another without loss.

    Every writer field must be known to the reader, every reader field must be
    written or be nullable or defaulted, and types must agree kind for kind.

    Raises:
        SchemaMismatchError: At the first disagreement
    """
    _Compatibility(writer_schema, reader_schema).check()


class _Compatibility:

    def __init__(self, writer_schema: AvroSchema, reader_schema: AvroSchema):
        self.writer_schema = writer_schema
        self.reader_schema = reader_schema
        self.writer_types = NamedTypes(writer_schema)
        self.reader_types = NamedTypes(reader_schema)
        self.visited = set()

    def check(self) -> None:
        self._check(self.writer_schema, self.reader_schema, '', '', "#")

    def _check(self, writer: AvroSchema, reader: AvroSchema, writer_ns: str, reader_ns: str, path: str) -> None:
        if is_nullable(writer) and not is_nullable(reader):
            raise SchemaMismatchError(path, reader, writer, "Payload may hold null where the schema does not allow it")
        writer = non_null_type(writer)
        reader = non_null_type(reader)
        if writer == "null":
            return
        writer, writer_ns = self.writer_types.resolve(writer, writer_ns)
        reader, reader_ns = self.reader_types.resolve(reader, reader_ns)
        writer_type = type_name_of(writer)
        reader_type = type_name_of(reader)
        if writer_type in PASSTHROUGH_TYPES:
            raise SchemaMismatchError(path, reader, writer, f"Unknown type '{writer_type}'")
        if writer_type != reader_type or logical_type_of(writer) != logical_type_of(reader):
            raise SchemaMismatchError(path, reader, writer)
        if writer_type == 'array':
            self._check(writer.get('items', 'null'), reader.get('items', 'null'), writer_ns, reader_ns, f"{path}/items")
        elif writer_type == 'record':
            pair = (fullname(writer, writer_ns), fullname(reader, reader_ns))
            if pair in self.visited:
                return
            self.visited.add(pair)
            self._check_record(writer, reader, writer_ns, reader_ns, path)

    def _check_record(self, writer: dict, reader: dict, writer_ns: str, reader_ns: str, path: str) -> None:
        writer_fields = {f['name']: f for f in writer.get('fields', [])}
        matched = set()
        for field in reader.get('fields', []):
            names = [field['name']] + field.get('aliases', [])
            source = next((writer_fields[n] for n in names if n in writer_fields), None)
            field_path = f"{path}/{pointer_segment(field['name'])}"
            if source is None:
                if not is_nullable(field.get('type', 'null')) and 'default' not in field:
                    raise SchemaMismatchError(field_path, field.get('type'), MISSING,
                                              f"Field '{field['name']}' is not written by the payload")
                continue
            matched.add(source['name'])
            self._check(source.get('type', 'null'), field.get('type', 'null'), writer_ns, reader_ns, field_path)
        for name, field in writer_fields.items():
            if name not in matched:
                raise SchemaMismatchError(f"{path}/{pointer_segment(name)}", reader, field.get('type'),
                                          f"Unknown field '{name}' of type {describe_type(field.get('type'))}")


def decode(
    schema: Optional[AvroSchema],
    fo: BinaryIO,
    strict_unknown_fields: bool = False,
    options: Optional[ConversionOptions] = None
) -> Iterator[Any]:
    """Lazily decodes an Avro object container file into documents.

    Args:
        schema: Schema to read the documents as, or None for the writer schema
        fo: Readable binary stream
        strict_unknown_fields: Fail on payload fields or types the schema does not know
        options: Job options

    Returns:
        Iterator over the decoded documents
    """
    options = options or ConversionOptions()
    if strict_unknown_fields:
        options = replace(options, strict_unknown_fields=True)
    return AvroDecoder(schema, options).decode(fo)
