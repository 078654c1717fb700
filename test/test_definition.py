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
# PYTHONPATH=.. python3 test_definition.py
#
"""
This test tests up front validation of state machine definitions.
"""

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest
from asl_offline_engine.asl_exceptions import DefinitionError
from asl_offline_engine.definition import (
    StateMachineValidator,
    is_terminal,
    validate_state_machine,
)

VALID = {
    "StartAt": "Choose",
    "States": {
        "Choose": {
            "Type": "Choice",
            "Choices": [{"Variable": "$.n", "NumericEquals": 1, "Next": "Fork"}],
            "Default": "Done"
        },
        "Fork": {
            "Type": "Parallel",
            "Branches": [
                {"StartAt": "A", "States": {"A": {"Type": "Pass", "End": True}}}
            ],
            "Next": "Each"
        },
        "Each": {
            "Type": "Map",
            "ItemProcessor": {
                "StartAt": "B", "States": {"B": {"Type": "Wait", "Seconds": 1, "End": True}}
            },
            "Next": "Done"
        },
        "Done": {"Type": "Succeed"}
    }
}


class TestDefinition(unittest.TestCase):

    def problems(self, definition):
        return StateMachineValidator().validate(definition)

    def test_valid_definition(self):
        self.assertEqual(self.problems(VALID), [])
        self.assertIs(validate_state_machine(VALID), VALID)

    def test_missing_start_at_target(self):
        problems = self.problems({"StartAt": "Nope", "States": {}})
        self.assertEqual(len(problems), 1)
        self.assertIn("Nope", problems[0])

    def test_missing_states(self):
        self.assertTrue(self.problems({"StartAt": "A"}))

    def test_dangling_targets_in_nested_scopes(self):
        definition = {
            "StartAt": "Fork",
            "States": {
                "Fork": {
                    "Type": "Parallel",
                    "Branches": [{
                        "StartAt": "A",
                        "States": {"A": {"Type": "Pass", "Next": "Fork"}}
                    }],
                    "End": True
                }
            }
        }
        problems = self.problems(definition)
        # A branch can't transition to a state in its parent scope.
        self.assertEqual(len(problems), 1)
        self.assertIn("Branches[0]", problems[0])

    def test_choice_targets(self):
        definition = {
            "StartAt": "Choose",
            "States": {
                "Choose": {
                    "Type": "Choice",
                    "Choices": [{"Variable": "$.n", "NumericEquals": 1, "Next": "X"}],
                    "Default": "Y"
                }
            }
        }
        self.assertEqual(len(self.problems(definition)), 2)

    def test_illegal_type_and_bad_wait(self):
        definition = {
            "StartAt": "A",
            "States": {
                "A": {"Type": "Sleep", "End": True},
                "B": {"Type": "Wait", "End": True}
            }
        }
        with self.assertRaises(DefinitionError) as cm:
            validate_state_machine(definition)
        self.assertIn("illegal Type", str(cm.exception))
        self.assertIn("exactly one of", str(cm.exception))

    def test_map_without_iterator(self):
        definition = {"StartAt": "M", "States": {"M": {"Type": "Map", "End": True}}}
        self.assertEqual(len(self.problems(definition)), 1)

    def test_map_max_concurrency(self):
        definition = {"StartAt": "M", "States": {"M": {
            "Type": "Map",
            "Iterator": {"StartAt": "P", "States": {"P": {"Type": "Pass", "End": True}}},
            "MaxConcurrency": -2,
            "End": True
        }}}
        problems = self.problems(definition)
        self.assertEqual(len(problems), 1)
        self.assertIn("MaxConcurrency", problems[0])
        definition["States"]["M"]["MaxConcurrency"] = 0
        self.assertEqual(self.problems(definition), [])

    def test_is_terminal(self):
        self.assertTrue(is_terminal({"Type": "Pass", "End": True}))
        self.assertTrue(is_terminal({"Type": "Succeed", "Next": "X"}))
        self.assertFalse(is_terminal({"Type": "Pass", "Next": "X"}))


if __name__ == '__main__':
    unittest.main()
