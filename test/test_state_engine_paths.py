#
# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
#
# Run with:
# PYTHONPATH=.. python3 test_state_engine_paths.py
#

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest

from asl_offline_engine.state_engine_paths import (
    apply_jsonpath,
    apply_path,
    apply_resultpath,
    evaluate_payload_template,
)
from asl_offline_engine.asl_exceptions import *

"""
JSON document for use by examples from https://goessner.net/articles/JsonPath/
"""
goessner = { "store": {
    "book": [
      { "category": "reference",
        "author": "Nigel Rees",
        "title": "Sayings of the Century",
        "price": 8.95
      },
      { "category": "fiction",
        "author": "Evelyn Waugh",
        "title": "Sword of Honour",
        "price": 12.99
      },
      { "category": "fiction",
        "author": "Herman Melville",
        "title": "Moby Dick",
        "isbn": "0-553-21311-3",
        "price": 8.99
      }
    ],
    "bicycle": {
      "color": "red",
      "price": 19.95
    }
  }
}

context = {
    "Execution": {"Name": "test-execution"},
    "Map": {"Item": {"Index": 2, "Value": {"sku": "abc"}}}
}


class TestApplyPath(unittest.TestCase):

    def test_authors_of_all_books(self):
        result = apply_jsonpath(goessner, "$.store.book[*].author")
        self.assertEqual(result, ["Nigel Rees", "Evelyn Waugh", "Herman Melville"])

    def test_single_match_is_unwrapped(self):
        self.assertEqual(apply_jsonpath(goessner, "$.store.bicycle.color"), "red")
        self.assertEqual(apply_jsonpath(goessner, "$..book[2]")["title"], "Moby Dick")

    def test_root_path_returns_input(self):
        self.assertIs(apply_jsonpath(goessner, "$"), goessner)

    def test_falsy_values_are_matches(self):
        data = {"zero": 0, "flag": False, "nothing": None}
        self.assertEqual(apply_jsonpath(data, "$.zero"), 0)
        self.assertEqual(apply_jsonpath(data, "$.flag"), False)
        self.assertIsNone(apply_jsonpath(data, "$.nothing"))

    def test_missing_path_raises_or_defaults(self):
        with self.assertRaises(PathMatchFailure):
            apply_jsonpath(goessner, "$.store.car")
        self.assertEqual(
            apply_jsonpath(goessner, "$.store.car", throw_exception_on_failed_match=False),
            {}
        )

    def test_context_path(self):
        self.assertEqual(apply_path({}, context, "$$.Execution.Name"), "test-execution")
        self.assertEqual(apply_path({}, context, "$$.Map.Item.Index"), 2)

    def test_path_must_start_with_dollar(self):
        with self.assertRaises(ParameterPathFailure):
            apply_path({}, context, "Execution.Name")


class TestApplyResultPath(unittest.TestCase):

    def test_default_replaces_input(self):
        self.assertEqual(apply_resultpath({"a": 1}, {"b": 2}), {"b": 2})

    def test_null_discards_result(self):
        data = {"a": 1}
        self.assertIs(apply_resultpath(data, {"b": 2}, None), data)

    def test_writes_in_place(self):
        data = {"a": 1}
        output = apply_resultpath(data, "result", "$.b")
        self.assertIs(output, data)
        self.assertEqual(data, {"a": 1, "b": "result"})

    def test_creates_intermediate_objects(self):
        output = apply_resultpath({"a": 1}, [1, 2], "$.x.y.z")
        self.assertEqual(output, {"a": 1, "x": {"y": {"z": [1, 2]}}})

    def test_overwrites_existing_field(self):
        output = apply_resultpath({"a": {"b": 1, "c": 2}}, 3, "$.a.b")
        self.assertEqual(output, {"a": {"b": 3, "c": 2}})

    def test_array_index(self):
        output = apply_resultpath({"list": [1, 2, 3]}, "two", "$.list[1]")
        self.assertEqual(output, {"list": [1, "two", 3]})

    def test_bad_targets(self):
        with self.assertRaises(ResultPathMatchFailure):
            apply_resultpath({"a": 1}, 2, "$$.a")
        with self.assertRaises(ResultPathMatchFailure):
            apply_resultpath({"a": 1}, 2, "$.a.b")
        with self.assertRaises(ResultPathMatchFailure):
            apply_resultpath({"list": [1]}, 2, "$.list[5]")


class TestPayloadTemplate(unittest.TestCase):

    def test_no_template_returns_input(self):
        data = {"a": 1}
        self.assertIs(evaluate_payload_template(data, context, None), data)

    def test_static_and_path_fields(self):
        template = {
            "static": "value",
            "fromInput.$": "$.order.id",
            "fromContext.$": "$$.Execution.Name",
            "nested": {"item.$": "$$.Map.Item.Value"},
            "list": [1, {"whole.$": "$"}],
        }
        data = {"order": {"id": 42}}
        result = evaluate_payload_template(data, context, template)
        self.assertEqual(result, {
            "static": "value",
            "fromInput": 42,
            "fromContext": "test-execution",
            "nested": {"item": {"sku": "abc"}},
            "list": [1, {"whole": {"order": {"id": 42}}}],
        })
        # The whole input is copied, not shared.
        self.assertIsNot(result["list"][1]["whole"], data)

    def test_missing_path_is_parameter_path_failure(self):
        with self.assertRaises(ParameterPathFailure):
            evaluate_payload_template({}, context, {"x.$": "$.missing"})

    def test_intrinsic_functions(self):
        data = {"name": "World", "json": "{\"a\": 1}", "items": [1, 2, 3]}
        template = {
            "greeting.$": "States.Format('Hello, {}!', $.name)",
            "parsed.$": "States.StringToJson($.json)",
            "array.$": "States.Array(1, 'two', true, null)",
            "length.$": "States.ArrayLength($.items)",
            "second.$": "States.ArrayGetItem($.items, 1)",
            "sum.$": "States.MathAdd(40, 2)",
            "uuid.$": "States.UUID()",
        }
        result = evaluate_payload_template(data, context, template)
        self.assertEqual(result["greeting"], "Hello, World!")
        self.assertEqual(result["parsed"], {"a": 1})
        self.assertEqual(result["array"], [1, "two", True, None])
        self.assertEqual(result["length"], 3)
        self.assertEqual(result["second"], 2)
        self.assertEqual(result["sum"], 42)
        self.assertEqual(len(result["uuid"]), 36)

    def test_unsupported_intrinsic(self):
        with self.assertRaises(IntrinsicFailure):
            evaluate_payload_template({}, context, {"x.$": "States.Nope(1)"})
        with self.assertRaises(IntrinsicFailure):
            evaluate_payload_template({}, context, {"x.$": "States.MathAdd(1)"})


if __name__ == '__main__':
    unittest.main()
