"""Converts JSON documents to Avro and back.

This module provides the pipeline entry points used by the command line:
- infer: infer an Avro schema from JSON files
- encode: infer (or load) a schema and write JSON documents as an Avro container file
- decode: read an Avro container file back into JSON Lines

JSON number literals are read so that their precision survives: integers
become int, literals in exponent notation become float, and plain decimal
literals become Decimal (which inference maps to string).
"""

import json
import logging
import os
from decimal import Decimal
from typing import Any, Iterable, Iterator, List, Optional

from avroshape.avrodecoder import AvroDecoder
from avroshape.avroencoder import AvroEncoder
from avroshape.coercion import to_text
from avroshape.options import ConversionOptions
from avroshape.schema_inference import AvroSchemaInferrer
from avroshape.schema_model import AvroSchema

logger = logging.getLogger(__name__)


def parse_json_number(literal: str) -> Any:
    """Reads a non-integral JSON number literal without losing precision."""
    if 'e' in literal or 'E' in literal:
        return float(literal)
    return Decimal(literal)


def loads(text: str) -> Any:
    """Parses one JSON text into interchange values."""
    return json.loads(text, parse_float=parse_json_number)


def parse_json_documents(content: str) -> List[Any]:
    """Parses JSON text holding documents.

    Handles both single JSON documents and JSON Lines. A root-level array of
    a single document is flattened into its elements.
    """
    content = content.strip()
    if not content:
        return []
    try:
        data = loads(content)
        if isinstance(data, list):
            return list(data)
        return [data]
    except json.JSONDecodeError:
        pass

    documents = []
    for line_number, line in enumerate(content.split('\n'), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            documents.append(loads(line))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON on line {line_number}: {e.msg}") from e
    return documents


def load_json_documents(input_files: List[str], sample_size: int = 0) -> List[Any]:
    """Loads JSON documents from files.

    Args:
        input_files: List of file paths
        sample_size: Maximum documents to load (0 = all)

    Returns:
        List of parsed documents
    """
    documents: List[Any] = []
    for file_path in input_files:
        with open(file_path, 'r', encoding='utf-8') as f:
            documents.extend(parse_json_documents(f.read()))
        if sample_size > 0 and len(documents) >= sample_size:
            return documents[:sample_size]
    return documents


def _json_default(value: Any) -> Any:
    return to_text(value)


def dumps(document: Any) -> str:
    """Serializes a document as one JSON line.

    Timestamps, dates and times become ISO-8601 text, bytes become base64.
    """
    return json.dumps(document, default=_json_default, ensure_ascii=False)


def write_json_lines(documents: Iterable[Any], json_file: str) -> int:
    """Writes documents to a JSON Lines file and returns how many were written."""
    _ensure_directory(json_file)
    count = 0
    with open(json_file, 'w', encoding='utf-8') as f:
        for document in documents:
            f.write(dumps(document))
            f.write('\n')
            count += 1
    return count


def _ensure_directory(file_path: str) -> None:
    output_dir = os.path.dirname(file_path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)


def _load_schema(avro_schema_file: str) -> AvroSchema:
    with open(avro_schema_file, 'r', encoding='utf-8') as f:
        return json.load(f)


def _save_schema(schema: AvroSchema, avro_schema_file: str) -> None:
    _ensure_directory(avro_schema_file)
    with open(avro_schema_file, 'w', encoding='utf-8') as f:
        json.dump(schema, f, indent=2)


def convert_json_to_avro_schema(
    input_files: List[str],
    avro_schema_file: str,
    type_name: str = 'Document',
    namespace: str = '',
    rows_to_scan: int = 0
) -> AvroSchema:
    """Infers an Avro schema from JSON files.

    Args:
        input_files: List of JSON or JSON Lines file paths to analyze
        avro_schema_file: Output path for the Avro schema
        type_name: Name for the root record
        namespace: Namespace for the root record
        rows_to_scan: Maximum number of documents to inspect (0 = all)

    Returns:
        The inferred schema
    """
    if not input_files:
        raise ValueError("At least one input file is required")
    options = ConversionOptions(type_name=type_name, namespace=namespace, rows_to_scan=rows_to_scan)
    documents = load_json_documents(input_files, rows_to_scan)
    schema = AvroSchemaInferrer(options).infer(documents)
    _save_schema(schema, avro_schema_file)
    return schema


def convert_json_to_avro(
    input_files: List[str],
    avro_file: str,
    avro_schema_file: Optional[str] = None,
    schema_output_file: Optional[str] = None,
    type_name: str = 'Document',
    namespace: str = '',
    rows_to_scan: int = 0,
    codec: str = 'null',
    on_bad_records: str = 'ERROR',
    strict_schema: bool = False,
    parse_strings: bool = False,
    time_zone_id: Optional[str] = None
) -> int:
    """Writes JSON documents to an Avro container file.

    The schema is loaded from avro_schema_file when given, otherwise it is
    inferred from the documents first.

    Args:
        input_files: List of JSON or JSON Lines file paths
        avro_file: Output path for the Avro container file
        avro_schema_file: Schema to encode with, instead of inferring one
        schema_output_file: Where to save the inferred schema, if anywhere
        type_name: Name for the root record of an inferred schema
        namespace: Namespace for the root record of an inferred schema
        rows_to_scan: Maximum number of documents inspected by inference (0 = all)
        codec: Block compression codec ('null', 'deflate', ...)
        on_bad_records: ERROR, WARN or SKIP
        strict_schema: Reject document fields the schema does not declare
        parse_strings: Parse text values written to non-string fields
        time_zone_id: Zone of timestamps written without one (UTC when not set)

    Returns:
        Number of records written
    """
    if not input_files:
        raise ValueError("At least one input file is required")
    options = ConversionOptions(type_name=type_name, namespace=namespace, rows_to_scan=rows_to_scan,
                                codec=codec, on_bad_records=on_bad_records, strict_schema=strict_schema,
                                parse_strings=parse_strings, time_zone_id=time_zone_id)
    documents = load_json_documents(input_files)
    if avro_schema_file:
        schema = _load_schema(avro_schema_file)
    else:
        schema = AvroSchemaInferrer(options).infer(documents)
        if schema_output_file:
            _save_schema(schema, schema_output_file)

    _ensure_directory(avro_file)
    with open(avro_file, 'wb') as f:
        count = AvroEncoder(schema, options).encode(documents, f)
    logger.info("Wrote %d of %d documents to %s", count, len(documents), avro_file)
    return count


def read_avro(avro_file: str, avro_schema_file: Optional[str] = None,
              options: Optional[ConversionOptions] = None) -> Iterator[Any]:
    """Lazily reads the documents of an Avro container file."""
    schema = _load_schema(avro_schema_file) if avro_schema_file else None
    decoder = AvroDecoder(schema, options)
    with open(avro_file, 'rb') as f:
        yield from decoder.decode(f)


def convert_avro_to_json(
    avro_file: str,
    json_file: str,
    avro_schema_file: Optional[str] = None,
    strict_unknown_fields: bool = False,
    on_bad_records: str = 'ERROR'
) -> int:
    """Reads an Avro container file into a JSON Lines file.

    Args:
        avro_file: Input Avro container file
        json_file: Output JSON Lines file
        avro_schema_file: Schema to read the documents as, instead of the writer schema
        strict_unknown_fields: Fail on payload fields or types the schema does not know
        on_bad_records: ERROR, WARN or SKIP

    Returns:
        Number of documents written
    """
    options = ConversionOptions(strict_unknown_fields=strict_unknown_fields, on_bad_records=on_bad_records)
    count = write_json_lines(read_avro(avro_file, avro_schema_file, options), json_file)
    logger.info("Wrote %d documents to %s", count, json_file)
    return count
