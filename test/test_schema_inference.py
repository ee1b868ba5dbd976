"""Tests for Avro schema inference from documents."""

import datetime
import os
import sys
import unittest
from decimal import Decimal

import fastavro

current_script_path = os.path.abspath(__file__)
project_root = os.path.dirname(os.path.dirname(current_script_path))
sys.path.append(project_root)

from avroshape.errors import InferenceError
from avroshape.options import ConversionOptions
from avroshape.schema_inference import AvroSchemaInferrer, ShapeAccumulator, infer_avro_schema
from avroshape.schema_model import schemas_equivalent


def fields_of(schema):
    return {f['name']: f for f in schema['fields']}


class TestInferPrimitives(unittest.TestCase):
    """Test cases for the mapping of scalar values."""

    def test_simple_object(self):
        """Test inference from a simple record."""
        values = [
            {"name": "Alice", "age": 30, "active": True},
            {"name": "Bob", "age": 25, "active": False}
        ]

        schema = infer_avro_schema(values, type_name='Person', namespace='com.example')

        self.assertEqual(schema['type'], 'record')
        self.assertEqual(schema['name'], 'Person')
        self.assertEqual(schema['namespace'], 'com.example')
        fields_by_name = fields_of(schema)
        self.assertEqual(fields_by_name['name']['type'], 'string')
        self.assertEqual(fields_by_name['age']['type'], 'long')
        self.assertEqual(fields_by_name['active']['type'], 'boolean')
        self.assertNotIn('default', fields_by_name['name'])

    def test_field_order_follows_first_appearance(self):
        """Fields appear in the order they were first seen."""
        schema = infer_avro_schema([{"b": 1, "a": 2}, {"c": 3, "a": 4}])
        self.assertEqual([f['name'] for f in schema['fields']], ['b', 'a', 'c'])

    def test_exact_decimal_maps_to_string(self):
        """Exact decimals keep their digits by becoming strings."""
        schema = infer_avro_schema([{"hello": Decimal("3.14")}])
        self.assertEqual(fields_of(schema)['hello']['type'], 'string')

    def test_float_maps_to_double(self):
        schema = infer_avro_schema([{"ratio": 3.14e0}])
        self.assertEqual(fields_of(schema)['ratio']['type'], 'double')

    def test_integer_beyond_long_maps_to_string(self):
        """Integers that do not fit 64 bits are treated as decimals."""
        schema = infer_avro_schema([{"n": 2 ** 70}])
        self.assertEqual(fields_of(schema)['n']['type'], 'string')

    def test_temporal_values(self):
        """Timestamps, dates and times map to annotated primitives."""
        values = [{
            "at": datetime.datetime(2024, 5, 1, 12, 30, tzinfo=datetime.timezone.utc),
            "local": datetime.datetime(2024, 5, 1, 12, 30),
            "day": datetime.date(2024, 5, 1),
            "clock": datetime.time(12, 30),
            "blob": b"\x00\x01",
        }]

        fields_by_name = fields_of(infer_avro_schema(values))

        self.assertEqual(fields_by_name['at']['type'], {"type": "long", "logicalType": "timestamp-micros"})
        self.assertEqual(fields_by_name['local']['type'], {"type": "long", "logicalType": "local-timestamp-micros"})
        self.assertEqual(fields_by_name['day']['type'], {"type": "int", "logicalType": "date"})
        self.assertEqual(fields_by_name['clock']['type'], {"type": "long", "logicalType": "time-micros"})
        self.assertEqual(fields_by_name['blob']['type'], 'bytes')

    def test_mixed_scalars_widen_to_string(self):
        """Disagreeing scalar kinds at one position widen to string."""
        schema = infer_avro_schema([{"v": 1}, {"v": "one"}, {"v": 2.5}])
        self.assertEqual(fields_of(schema)['v']['type'], 'string')

    def test_int_and_float_widen_to_string(self):
        schema = infer_avro_schema([{"v": 1}, {"v": 1.5}])
        self.assertEqual(fields_of(schema)['v']['type'], 'string')

    def test_record_and_scalar_widen_to_string(self):
        """A position holding both records and scalars becomes string."""
        schema = infer_avro_schema([{"v": {"a": 1}}, {"v": 3}])
        self.assertEqual(fields_of(schema)['v']['type'], 'string')


class TestInferNullability(unittest.TestCase):
    """Test cases for nullable and missing fields."""

    def test_sparse_data(self):
        """Fields missing from some records become nullable with a null default."""
        values = [
            {"name": "Alice", "age": 30},
            {"name": "Bob", "email": "bob@example.com"},
            {"name": "Charlie", "age": 35, "email": "charlie@example.com"}
        ]

        fields_by_name = fields_of(infer_avro_schema(values))

        self.assertEqual(fields_by_name['name']['type'], 'string')
        self.assertEqual(fields_by_name['age']['type'], ['null', 'long'])
        self.assertIsNone(fields_by_name['age']['default'])
        self.assertEqual(fields_by_name['email']['type'], ['null', 'string'])

    def test_empty_record_makes_every_field_nullable(self):
        schema = infer_avro_schema([{"id": 1, "label": "a"}, {}, {"id": 2, "label": "b"}])
        fields_by_name = fields_of(schema)
        self.assertEqual(fields_by_name['id']['type'], ['null', 'long'])
        self.assertEqual(fields_by_name['label']['type'], ['null', 'string'])

    def test_null_value_makes_field_nullable(self):
        schema = infer_avro_schema([{"v": 1}, {"v": None}])
        self.assertEqual(fields_of(schema)['v']['type'], ['null', 'long'])

    def test_only_nulls(self):
        """A position that only ever held null is typed null."""
        schema = infer_avro_schema([{"x": None}, {"x": None}])
        field = fields_of(schema)['x']
        self.assertEqual(field['type'], 'null')
        self.assertIsNone(field['default'])

    def test_nullable_nested_record(self):
        schema = infer_avro_schema([{"user": {"name": "a"}}, {"user": None}])
        user_type = fields_of(schema)['user']['type']
        self.assertEqual(user_type[0], 'null')
        self.assertEqual(user_type[1]['type'], 'record')


class TestInferStructure(unittest.TestCase):
    """Test cases for records, arrays and naming."""

    def test_nested_object(self):
        """Nested records are named after their field, namespaced by their parents."""
        schema = infer_avro_schema([{"user": {"name": "Alice", "email": "alice@example.com"}, "score": 100}],
                                   type_name='Event')

        user_type = fields_of(schema)['user']['type']
        self.assertEqual(user_type['type'], 'record')
        self.assertEqual(user_type['name'], 'user')
        self.assertEqual(user_type['namespace'], 'Event')
        self.assertEqual({f['name'] for f in user_type['fields']}, {'name', 'email'})
        self.assertEqual(fields_of(schema)['score']['type'], 'long')

    def test_heterogeneous_array_items_merge(self):
        """Array items of different shapes merge into one record type."""
        values = [{"items": [{"name": "one"}, {"name": "two", "extra": "hey"}, {"name": "three"}]}]

        schema = infer_avro_schema(values)

        items_type = fields_of(schema)['items']['type']
        self.assertEqual(items_type['type'], 'array')
        item_record = items_type['items']
        self.assertEqual(item_record['type'], 'record')
        self.assertEqual(item_record['name'], 'items_items')
        self.assertEqual(item_record['namespace'], 'Document')
        item_fields = fields_of(item_record)
        self.assertEqual(item_fields['name']['type'], 'string')
        self.assertEqual(item_fields['extra']['type'], ['null', 'string'])
        self.assertIsNone(item_fields['extra']['default'])

    def test_array_items_merge_across_documents(self):
        schema = infer_avro_schema([{"tags": ["a", "b"]}, {"tags": [1]}])
        self.assertEqual(fields_of(schema)['tags']['type'], {"type": "array", "items": "string"})

    def test_array_with_null_items(self):
        schema = infer_avro_schema([{"tags": ["a", None]}])
        self.assertEqual(fields_of(schema)['tags']['type'], {"type": "array", "items": ["null", "string"]})

    def test_always_empty_array(self):
        """An array that never held an item gets string items."""
        schema = infer_avro_schema([{"tags": []}, {"tags": []}])
        self.assertEqual(fields_of(schema)['tags']['type'], {"type": "array", "items": "string"})

    def test_nested_arrays(self):
        schema = infer_avro_schema([{"matrix": [[1, 2], [3]]}])
        self.assertEqual(fields_of(schema)['matrix']['type'],
                         {"type": "array", "items": {"type": "array", "items": "long"}})

    def test_same_leaf_name_at_different_paths(self):
        """Records sharing a leaf name get distinct full names."""
        values = [{
            "firstObject": {"myField": {"depth": 1}},
            "secondObject": {"myField": "just a string"},
            "thirdObject": {"myField": {"other": True}},
        }]

        schema = infer_avro_schema(values)

        fields_by_name = fields_of(schema)
        first = fields_of(fields_by_name['firstObject']['type'])['myField']['type']
        second = fields_of(fields_by_name['secondObject']['type'])['myField']['type']
        third = fields_of(fields_by_name['thirdObject']['type'])['myField']['type']
        self.assertEqual(second, 'string')
        self.assertEqual((first['namespace'], first['name']), ('Document.firstObject', 'myField'))
        self.assertEqual((third['namespace'], third['name']), ('Document.thirdObject', 'myField'))
        fastavro.parse_schema(schema)

    def test_colliding_record_names_get_suffix(self):
        """A derived record name already in use is suffixed; the shallower record keeps the plain name."""
        values = [{"tags": [{"a": 1}], "tags_items": {"b": "x"}}]

        schema = infer_avro_schema(values)

        fields_by_name = fields_of(schema)
        self.assertEqual(fields_by_name['tags_items']['type']['name'], 'tags_items')
        self.assertEqual(fields_by_name['tags']['type']['items']['name'], 'tags_items_2')
        fastavro.parse_schema(schema)

    def test_record_names_do_not_depend_on_key_order(self):
        forward = infer_avro_schema([{"tags": [{"x": 1}], "tags_items": {"y": 1}}])
        backward = infer_avro_schema([{"tags_items": {"y": 1}, "tags": [{"x": 1}]}])

        self.assertTrue(schemas_equivalent(forward, backward))
        self.assertEqual(fields_of(backward)['tags_items']['type']['name'], 'tags_items')

    def test_record_names_do_not_depend_on_document_order(self):
        first = {"tags": [{"x": 1}]}
        second = {"tags_items": {"y": 1}}
        self.assertTrue(schemas_equivalent(infer_avro_schema([first, second]),
                                           infer_avro_schema([second, first])))

    def test_field_names_are_sanitized(self):
        """Keys that are not valid Avro names keep their original spelling in altnames."""
        schema = infer_avro_schema([{"first-name": "Ada", "2nd": 1}])

        fields_by_name = fields_of(schema)
        self.assertEqual(fields_by_name['first_name']['altnames'], {"json": "first-name"})
        self.assertEqual(fields_by_name['_2nd']['altnames'], {"json": "2nd"})

    def test_sanitized_field_names_are_deduplicated(self):
        """A key that is already a valid name keeps it; the sanitized key takes the suffix."""
        schema = infer_avro_schema([{"a-b": 1, "a_b": 2}])
        names = [f['name'] for f in schema['fields']]
        self.assertEqual(names, ['a_b_2', 'a_b'])
        self.assertEqual(schema['fields'][0]['altnames'], {"json": "a-b"})
        self.assertNotIn('altnames', schema['fields'][1])

    def test_field_names_do_not_depend_on_key_order(self):
        forward = infer_avro_schema([{"a-b": 1, "a b": 2, "a_b": 3}])
        backward = infer_avro_schema([{"a_b": 3, "a b": 2, "a-b": 1}])
        self.assertTrue(schemas_equivalent(forward, backward))
        self.assertEqual(fields_of(forward)['a_b_2']['altnames'], {"json": "a b"})
        self.assertEqual(fields_of(forward)['a_b_3']['altnames'], {"json": "a-b"})
        self.assertEqual(fields_of(backward)['a_b_3']['altnames'], {"json": "a-b"})

    def test_namespace_is_sanitized(self):
        schema = infer_avro_schema([{"a": 1}], type_name='My Doc', namespace='com.my-company')
        self.assertEqual(schema['name'], 'My_Doc')
        self.assertEqual(schema['namespace'], 'com.my_company')


class TestInferProperties(unittest.TestCase):
    """Test cases for properties that hold for any input."""

    def test_order_independence(self):
        """Reordering the input yields an equivalent schema."""
        a = [{"id": 1, "label": "a"}, {}, {"id": 2, "label": "b"}]
        b = [{}, {"label": "b", "id": 2}, {"id": 1, "label": "a"}]
        c = [{"v": [{"x": 1}]}, {"v": [{"y": "s"}]}, {"w": None}]
        d = [{"w": None}, {"v": [{"y": "s"}]}, {"v": [{"x": 1}]}]

        self.assertTrue(schemas_equivalent(infer_avro_schema(a), infer_avro_schema(b)))
        self.assertTrue(schemas_equivalent(infer_avro_schema(c), infer_avro_schema(d)))

    def test_inferred_schemas_parse(self):
        """Every inferred schema is accepted by an Avro implementation."""
        values = [
            {"id": 1, "meta": {"tags": ["a"], "score": 1.5}, "rows": [[{"k": "v"}]]},
            {"id": "two", "meta": None, "rows": []},
        ]
        fastavro.parse_schema(infer_avro_schema(values))


class TestInferRejections(unittest.TestCase):
    """Test cases for inputs no schema can be inferred for."""

    def test_empty_input(self):
        with self.assertRaises(InferenceError):
            infer_avro_schema([])

    def test_top_level_array(self):
        with self.assertRaises(InferenceError):
            infer_avro_schema([[1, 2]])

    def test_top_level_scalar(self):
        with self.assertRaises(InferenceError):
            infer_avro_schema([{"a": 1}, 42])

    def test_unsupported_value_reports_path(self):
        with self.assertRaises(InferenceError) as context:
            infer_avro_schema([{"a": {"b": {1, 2}}}])
        self.assertEqual(context.exception.path, '#/a/b')

    def test_non_string_key(self):
        with self.assertRaises(InferenceError):
            infer_avro_schema([{1: "x"}])


class TestInferrerOptions(unittest.TestCase):
    """Test cases for inference options."""

    def test_rows_to_scan(self):
        """Only the first rows_to_scan documents shape the schema."""
        inferrer = AvroSchemaInferrer(ConversionOptions(rows_to_scan=1))
        schema = inferrer.infer([{"a": 1}, {"b": 2}])
        self.assertEqual([f['name'] for f in schema['fields']], ['a'])
        self.assertEqual(schema['fields'][0]['type'], 'long')

    def test_altnames_key(self):
        inferrer = AvroSchemaInferrer(ConversionOptions(altnames_key='source'))
        schema = inferrer.infer([{"a b": 1}])
        self.assertEqual(schema['fields'][0]['altnames'], {"source": "a b"})

    def test_package_exports(self):
        """The package exposes inference lazily under both names."""
        import avroshape
        documents = [{"a": 1}]
        self.assertEqual(avroshape.infer_schema(documents), avroshape.infer_avro_schema(documents))

    def test_accumulator_counts_documents(self):
        accumulator = ShapeAccumulator()
        accumulator.add({"a": [1, 2]})
        accumulator.add({"a": []})
        self.assertEqual(accumulator.documents, 2)
        self.assertEqual(accumulator.shapes[("a",)].lists, 2)
        self.assertEqual(accumulator.shapes[("a", None)].occurrences, 2)


if __name__ == '__main__':
    unittest.main()
