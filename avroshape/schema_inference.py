"""Infers a single Avro schema from a stream of heterogeneous documents.

Inference runs in two phases. The first phase walks every document and
folds what it sees into one PositionShape per structural position; positions
are identified by their key path from the root, so shapes live in a flat
arena rather than in a tree that would have to be rewritten as new data
arrives. The second phase turns the arena into an Avro schema.

The engine never rejects heterogeneous data:
- fields missing from some records, or null in some records, become nullable
- scalar kinds that disagree at one position widen to string
- arrays fold all their items, across all documents, into one item type
Only a top-level shape that is not a record is refused.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from jsonpointer import JsonPointer

from avroshape.coercion import WIDEST_TYPE, scalar_type, widen_types
from avroshape.errors import InferenceError
from avroshape.options import ConversionOptions
from avroshape.schema_model import AvroSchema, avro_name, avro_namespace, make_nullable
from avroshape.values import ValueKind, kind_of

logger = logging.getLogger(__name__)

# A position is the tuple of keys leading to it; ITEMS stands for "any element of the list"
Position = Tuple[Optional[str], ...]
ITEMS = None
ROOT: Position = ()


def pointer_segment(key: str) -> str:
    """Escape a key for use as one JSON pointer reference token."""
    return JsonPointer.from_parts([key]).path[1:]


@dataclass
class PositionShape:
    """What has been observed at one structural position."""
    occurrences: int = 0
    nulls: int = 0
    scalar_type: Optional[AvroSchema] = None
    structs: int = 0
    fields: Dict[str, int] = field(default_factory=dict)  # key -> number of structs carrying it
    lists: int = 0
    items: int = 0

    @property
    def categories(self) -> int:
        """Number of distinct value categories (scalar, record, array) seen here."""
        return (self.scalar_type is not None) + (self.structs > 0) + (self.lists > 0)


class ShapeAccumulator:
    """Phase one: accumulates the observed shape of every position."""

    def __init__(self):
        self.shapes: Dict[Position, PositionShape] = {}
        self.documents = 0

    def add(self, document: Any) -> None:
        """Fold one top-level document into the accumulated shapes.

        Raises:
            InferenceError: If the document is not a record or holds a non-value object
        """
        try:
            kind = kind_of(document)
        except TypeError as e:
            raise InferenceError(f"Document {self.documents}: {e}") from e
        if kind != ValueKind.STRUCT:
            raise InferenceError(
                f"Document {self.documents}: top-level values must be records, got {kind.value}")
        self._observe(ROOT, document, "#")
        self.documents += 1

    def _observe(self, position: Position, value: Any, pointer: str) -> None:
        shape = self.shapes.get(position)
        if shape is None:
            shape = self.shapes[position] = PositionShape()
        shape.occurrences += 1
        try:
            kind = kind_of(value)
        except TypeError as e:
            raise InferenceError(f"Document {self.documents}: {e}", pointer) from e

        if kind == ValueKind.NULL:
            shape.nulls += 1
        elif kind == ValueKind.STRUCT:
            shape.structs += 1
            for key, child in value.items():
                if not isinstance(key, str):
                    raise InferenceError(
                        f"Document {self.documents}: record keys must be strings, got {type(key).__name__}",
                        pointer)
                shape.fields[key] = shape.fields.get(key, 0) + 1
                self._observe(position + (key,), child, f"{pointer}/{pointer_segment(key)}")
        elif kind == ValueKind.LIST:
            shape.lists += 1
            for index, item in enumerate(value):
                shape.items += 1
                self._observe(position + (ITEMS,), item, f"{pointer}/{index}")
        else:
            observed = scalar_type(value, kind)
            if shape.scalar_type is None:
                shape.scalar_type = observed
            else:
                shape.scalar_type = widen_types(shape.scalar_type, observed)

    def finalize(self, type_name: str = 'Document', namespace: str = '', altnames_key: str = 'json') -> AvroSchema:
        """Phase two: build the Avro schema from the accumulated shapes.

        Raises:
            InferenceError: If no document was added
        """
        if self.documents == 0 or ROOT not in self.shapes:
            raise InferenceError("Cannot infer a schema from an empty input")
        return _SchemaBuilder(self.shapes, namespace, altnames_key).build(type_name)


class _SchemaBuilder:
    """Turns an arena of position shapes into Avro schema nodes.

    Names never depend on the order in which documents or keys arrived. Within
    a record, keys that already are valid Avro names keep them and sanitized
    keys take suffixes in key order. Record names are handed out after the
    whole tree is built, shallowest position first.
    """

    def __init__(self, shapes: Dict[Position, PositionShape], namespace: str, altnames_key: str):
        self.shapes = shapes
        self.namespace = avro_namespace(namespace) if namespace else ''
        self.altnames_key = altnames_key
        self.records: List[Tuple[Position, str, Dict[str, Any]]] = []

    def build(self, type_name: str) -> AvroSchema:
        schema = self._record(ROOT, [avro_name(type_name)], self.shapes[ROOT])
        self._assign_record_names()
        return schema

    def _type(self, position: Position, name_path: List[str]) -> AvroSchema:
        """The non-null type of a position; nullability is decided by the parent."""
        shape = self.shapes[position]
        if shape.categories == 0:
            return "null"
        if shape.categories > 1:
            logger.debug("Position %s mixes records, arrays or scalars, widening to %s",
                         '.'.join(name_path), WIDEST_TYPE)
            return WIDEST_TYPE
        if shape.scalar_type is not None:
            return shape.scalar_type
        if shape.structs:
            return self._record(position, name_path, shape)
        return self._array(position, name_path, shape)

    def _array(self, position: Position, name_path: List[str], shape: PositionShape) -> AvroSchema:
        if shape.items == 0:
            return {"type": "array", "items": "string"}
        item_position = position + (ITEMS,)
        item_type = self._type(item_position, name_path[:-1] + [name_path[-1] + "_items"])
        if self.shapes[item_position].nulls:
            item_type = make_nullable(item_type)
        return {"type": "array", "items": item_type}

    def _record(self, position: Position, name_path: List[str], shape: PositionShape) -> AvroSchema:
        parents = name_path[:-1]
        if self.namespace:
            parents = [self.namespace] + parents
        namespace = '.'.join(parents)
        record: Dict[str, Any] = {"type": "record", "name": name_path[-1]}
        if namespace:
            record["namespace"] = namespace
        self.records.append((position, namespace, record))

        field_names = _field_names(shape.fields)
        fields: List[Dict[str, Any]] = []
        for key, presence in shape.fields.items():
            field_name = field_names[key]
            child_position = position + (key,)
            field_type = self._type(child_position, name_path + [field_name])
            avro_field: Dict[str, Any] = {"name": field_name, "type": field_type}
            if field_name != key:
                avro_field["altnames"] = {self.altnames_key: key}
            missing = presence < shape.structs
            if field_type == "null":
                avro_field["default"] = None
            elif missing or self.shapes[child_position].nulls:
                avro_field["type"] = make_nullable(field_type)
                avro_field["default"] = None
            fields.append(avro_field)
        record["fields"] = fields
        return record

    def _assign_record_names(self) -> None:
        """Make record names unique; the shallowest position keeps the plain name."""
        fullnames: Set[str] = set()
        for _, namespace, record in sorted(self.records, key=lambda r: _position_order(r[0])):
            name = record["name"]
            candidate = name
            suffix = 2
            while f"{namespace}.{candidate}" in fullnames:
                candidate = f"{name}_{suffix}"
                suffix += 1
            if candidate != name:
                logger.debug("Record name %s.%s already taken, using %s", namespace, name, candidate)
                record["name"] = candidate
            fullnames.add(f"{namespace}.{candidate}")


def _field_names(keys: Iterable[str]) -> Dict[str, str]:
    """Avro field names for the keys of one record, independent of key order."""
    keys = list(keys)
    names: Dict[str, str] = {}
    taken: Set[str] = set()
    for key in keys:
        if avro_name(key) == key:
            names[key] = key
            taken.add(key)
    for key in sorted(k for k in keys if k not in names):
        name = avro_name(key)
        candidate = name
        suffix = 2
        while candidate in taken:
            candidate = f"{name}_{suffix}"
            suffix += 1
        names[key] = candidate
        taken.add(candidate)
    return names


def _position_order(position: Position) -> Tuple[int, Tuple[Tuple[int, str], ...]]:
    """Sort key of a position: shallower first, then by key, array items after fields."""
    return len(position), tuple((1, '') if key is ITEMS else (0, key) for key in position)


class AvroSchemaInferrer:
    """Infers Avro schemas from streams of documents."""

    def __init__(self, options: Optional[ConversionOptions] = None):
        """Initialize the inferrer.

        Args:
            options: Job options; type_name, namespace, altnames_key and
                rows_to_scan are used
        """
        self.options = options or ConversionOptions()

    def infer(self, documents: Iterable[Any]) -> AvroSchema:
        """Infers one Avro record schema that every document is valid against.

        The whole input is scanned (or the first rows_to_scan documents when
        set) before the schema is built, because a later document may add
        fields or turn an earlier field nullable.

        Args:
            documents: Records of the interchange model

        Returns:
            The inferred Avro schema as a JSON-serializable document

        Raises:
            InferenceError: On empty input or a top-level value that is not a record
        """
        accumulator = ShapeAccumulator()
        for document in documents:
            if self.options.rows_to_scan and accumulator.documents >= self.options.rows_to_scan:
                break
            accumulator.add(document)
        schema = accumulator.finalize(self.options.type_name, self.options.namespace, self.options.altnames_key)
        logger.debug("Inferred schema %s from %d documents", self.options.type_name, accumulator.documents)
        return schema


def infer_avro_schema(
    documents: Iterable[Any],
    type_name: str = 'Document',
    namespace: str = '',
    rows_to_scan: int = 0
) -> AvroSchema:
    """Infers an Avro schema from documents.

    Args:
        documents: Records of the interchange model
        type_name: Name for the root record
        namespace: Avro namespace of the root record
        rows_to_scan: Number of documents to inspect (0 = all)

    Returns:
        Inferred Avro schema
    """
    options = ConversionOptions(type_name=type_name, namespace=namespace, rows_to_scan=rows_to_scan)
    return AvroSchemaInferrer(options).infer(documents)


infer_schema = infer_avro_schema
