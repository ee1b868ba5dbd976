"""Avro schema model helpers.

Schemas are plain Avro JSON documents: a str for primitives and named type
references, a dict for records, arrays and annotated primitives, a list for
unions. This module provides the small vocabulary used to inspect and build
them, plus the checks that keep schemas within the supported type algebra:

- primitives: null, boolean, int, long, float, double, bytes, string
- logical types on primitives (timestamps, date, time, decimal, uuid)
- record, array, named type references
- unions of at most one non-null member and an optional null
"""

# pylint: disable=too-many-return-statements, too-many-branches

import copy
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from avroshape.errors import InvalidSchemaError

AvroSchema = Union[str, Dict[str, Any], List[Any]]

PRIMITIVE_TYPES = ('null', 'boolean', 'int', 'long', 'float', 'double', 'bytes', 'string')
NAMED_TYPES = ('record', 'enum', 'fixed')
PASSTHROUGH_TYPES = ('enum', 'fixed', 'map')

TIMESTAMP_LOGICAL_TYPES = ('timestamp-millis', 'timestamp-micros')
LOCAL_TIMESTAMP_LOGICAL_TYPES = ('local-timestamp-millis', 'local-timestamp-micros')
TIME_LOGICAL_TYPES = ('time-millis', 'time-micros')


def avro_name(name):
    """Convert a name into an Avro name."""
    if isinstance(name, int):
        name = '_' + str(name)
    val = re.sub(r'[^a-zA-Z0-9_]', '_', name)
    if not val or re.match(r'^[0-9]', val):
        val = '_' + val
    return val


def avro_namespace(name):
    """Convert a dotted path into an Avro namespace."""
    return '.'.join(avro_name(part) for part in name.split('.') if part)


def fullname(avro_schema: Union[dict, str], parent_namespace: str = '') -> str:
    """Constructs the full name of a named type or of a type reference."""
    if isinstance(avro_schema, str):
        if '.' not in avro_schema and parent_namespace:
            return parent_namespace + '.' + avro_schema
        return avro_schema
    name = avro_schema.get("name", "")
    if '.' in name:
        return name
    namespace = avro_schema.get("namespace", parent_namespace)
    return namespace + "." + name if namespace else name


def namespace_of(avro_schema: dict, parent_namespace: str = '') -> str:
    """Namespace in effect inside a named type."""
    return fullname(avro_schema, parent_namespace).rpartition('.')[0]


def altname(field: dict, purpose: str) -> str:
    """Alternate name of a field for a purpose, or its Avro name."""
    if "altnames" in field and purpose in field["altnames"]:
        return field["altnames"][purpose]
    return field["name"]


def is_nullable(avro_type: AvroSchema) -> bool:
    """Check if an Avro type admits null."""
    if avro_type == "null":
        return True
    if isinstance(avro_type, list):
        return "null" in avro_type or any(
            isinstance(t, dict) and t.get('type') == 'null' for t in avro_type)
    return False


def make_nullable(avro_type: AvroSchema) -> AvroSchema:
    """Wrap a type in a union with null, null first so that null can be the default."""
    if is_nullable(avro_type):
        return avro_type
    if isinstance(avro_type, list):
        return ["null"] + list(avro_type)
    return ["null", avro_type]


def non_null_type(avro_type: AvroSchema) -> AvroSchema:
    """The concrete member of a nullable wrapper, or the type itself."""
    if isinstance(avro_type, list):
        members = [t for t in avro_type if t != "null" and not (isinstance(t, dict) and t.get('type') == 'null')]
        if not members:
            return "null"
        return members[0]
    return avro_type


def type_name_of(avro_type: AvroSchema) -> str:
    """The Avro type keyword of a schema node ('union' for lists, the name for references)."""
    if isinstance(avro_type, list):
        return 'union'
    if isinstance(avro_type, dict):
        return avro_type.get('type', '')
    return avro_type


def logical_type_of(avro_type: AvroSchema) -> Optional[str]:
    """The logical type annotation of a schema node, if any."""
    if isinstance(avro_type, dict):
        return avro_type.get('logicalType')
    return None


def primitive(type_name: str, logical_type: Optional[str] = None) -> AvroSchema:
    """Build a primitive schema node, annotated when a logical type is given."""
    if logical_type:
        return {"type": type_name, "logicalType": logical_type}
    return type_name


class NamedTypes:
    """Registry of the named types declared in a schema, for reference resolution."""

    def __init__(self, schema: AvroSchema):
        self.types: Dict[str, Dict[str, Any]] = {}
        self._collect(schema, '')

    def _collect(self, schema: AvroSchema, current_namespace: str) -> None:
        if isinstance(schema, dict):
            schema_type = schema.get('type')
            if schema_type in NAMED_TYPES:
                name = fullname(schema, current_namespace)
                self.types[name] = schema
                # short names resolve too, first declaration wins
                self.types.setdefault(name.rpartition('.')[2], schema)
                if schema_type == 'record':
                    namespace = name.rpartition('.')[0]
                    for field in schema.get('fields', []):
                        self._collect(field.get('type', 'null'), namespace)
            elif schema_type == 'array':
                self._collect(schema.get('items', 'null'), current_namespace)
            elif schema_type == 'map':
                self._collect(schema.get('values', 'null'), current_namespace)
        elif isinstance(schema, list):
            for item in schema:
                self._collect(item, current_namespace)

    def resolve(self, schema: AvroSchema, namespace: str = '') -> Tuple[AvroSchema, str]:
        """Resolve a named type reference.

        Returns:
            The referenced declaration (or the node itself when it is not a
            reference) and the namespace in effect inside it.
        """
        if isinstance(schema, str) and schema not in PRIMITIVE_TYPES:
            declared = self.types.get(fullname(schema, namespace)) or self.types.get(schema)
            if declared is None:
                raise InvalidSchemaError(f"Unknown type reference '{schema}'")
            return declared, namespace_of(declared, fullname(schema, namespace).rpartition('.')[0])
        if isinstance(schema, dict) and schema.get('type') in NAMED_TYPES:
            return schema, namespace_of(schema, namespace)
        return schema, namespace


def check_schema(schema: AvroSchema) -> NamedTypes:
    """Check that a schema stays within the supported type algebra.

    Returns:
        The registry of named types declared in the schema

    Raises:
        InvalidSchemaError: On unsupported constructs or unresolvable references
    """
    named_types = NamedTypes(schema)
    _check(schema, named_types, '', "#", set())
    return named_types


def _check(schema: AvroSchema, named_types: NamedTypes, namespace: str, path: str, seen: set) -> None:
    if isinstance(schema, list):
        non_null = [t for t in schema if t != 'null']
        if len(non_null) > 1:
            raise InvalidSchemaError("Unions may only combine one type with null", path)
        for member in non_null:
            if isinstance(member, list):
                raise InvalidSchemaError("Unions may not contain unions", path)
            _check(member, named_types, namespace, path, seen)
        return
    if isinstance(schema, str):
        if schema in PRIMITIVE_TYPES:
            return
        resolved, inner_namespace = named_types.resolve(schema, namespace)
        _check(resolved, named_types, inner_namespace, path, seen)
        return
    if not isinstance(schema, dict):
        raise InvalidSchemaError(f"Invalid schema node {schema!r}", path)
    schema_type = schema.get('type')
    if schema_type in PRIMITIVE_TYPES:
        return
    if schema_type == 'array':
        _check(schema.get('items', 'null'), named_types, namespace, f"{path}/items", seen)
        return
    if schema_type == 'record':
        name = fullname(schema, namespace)
        if name in seen:
            return
        seen.add(name)
        inner_namespace = name.rpartition('.')[0]
        field_names = set()
        for field in schema.get('fields', []):
            if 'name' not in field:
                raise InvalidSchemaError("Record field without a name", path)
            if field['name'] in field_names:
                raise InvalidSchemaError(f"Duplicate field '{field['name']}' in record '{name}'", path)
            field_names.add(field['name'])
            _check(field.get('type', 'null'), named_types, inner_namespace, f"{path}/{field['name']}", seen)
        return
    raise InvalidSchemaError(f"Unsupported type '{schema_type}'", path)


def normalize_schema(schema: AvroSchema, named_types: Optional[NamedTypes] = None, namespace: str = '') -> AvroSchema:
    """Canonical form of a schema for structural comparison.

    References are inlined, record fields are sorted by name, union members
    are put in a fixed order and documentation is dropped. Recursive records
    collapse to their fullname on re-entry.
    """
    if named_types is None:
        named_types = NamedTypes(schema)
    return _normalize(schema, named_types, namespace, set())


def _normalize(schema: AvroSchema, named_types: NamedTypes, namespace: str, stack: set) -> AvroSchema:
    if isinstance(schema, list):
        members = [_normalize(t, named_types, namespace, stack) for t in schema]
        return sorted(members, key=lambda m: (m != 'null', repr(m)))
    if isinstance(schema, str):
        if schema in PRIMITIVE_TYPES:
            return schema
        resolved, _ = named_types.resolve(schema, namespace)
        return _normalize(resolved, named_types, namespace, stack)
    schema_type = schema.get('type')
    if schema_type == 'record':
        name = fullname(schema, namespace)
        if name in stack:
            return name
        inner_namespace = name.rpartition('.')[0]
        stack = stack | {name}
        fields = []
        for field in schema.get('fields', []):
            normalized = {"name": field['name'],
                          "type": _normalize(field.get('type', 'null'), named_types, inner_namespace, stack)}
            if 'default' in field:
                normalized['default'] = field['default']
            fields.append(normalized)
        return {"type": "record", "name": name, "fields": sorted(fields, key=lambda f: f['name'])}
    if schema_type == 'array':
        return {"type": "array", "items": _normalize(schema.get('items', 'null'), named_types, namespace, stack)}
    if schema_type == 'map':
        return {"type": "map", "values": _normalize(schema.get('values', 'null'), named_types, namespace, stack)}
    normalized = copy.deepcopy(schema)
    normalized.pop('doc', None)
    if schema_type in PRIMITIVE_TYPES and len(normalized) == 1:
        return schema_type
    return normalized


def schemas_equivalent(a: AvroSchema, b: AvroSchema) -> bool:
    """True if two schemas describe the same structure, regardless of field and union member order."""
    return normalize_schema(a) == normalize_schema(b)
