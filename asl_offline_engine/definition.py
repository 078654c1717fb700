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
"""
Semantic validation of an ASL state machine definition.

The definition itself stays a plain dict, exactly as parsed from the user's
JSON/YAML, and the engine consults it for every transition. Validating it up
front means a dangling Next, an unknown Type or a malformed Wait state is
reported before any handler has run, rather than halfway through a run.

Based loosely on https://github.com/awslabs/statelint state_node.rb: we walk
each States node (including Parallel Branches and Map Iterators, each of which
is its own scope) and check that every StartAt/Next/Default target exists in
the scope it is referenced from.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

from asl_offline_engine.asl_exceptions import DefinitionError

STATE_TYPES = ("Task", "Choice", "Wait", "Parallel", "Map", "Pass", "Succeed", "Fail")
WAIT_FIELDS = ("Seconds", "Timestamp", "SecondsPath", "TimestampPath")


def get_iterator(state):
    # "Iterator" is the deprecated name of "ItemProcessor".
    return state.get("Iterator", state.get("ItemProcessor"))

def is_terminal(state):
    return state.get("Type") in ("Succeed", "Fail") or not state.get("Next")

def wait_fields(state):
    return [field for field in WAIT_FIELDS if field in state]

def is_max_concurrency(value):
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class StateMachineValidator(object):
    def __init__(self):
        self.problems = []

    def validate(self, definition, path="$"):
        """
        Collect every problem found in definition and return the list.
        """
        if not isinstance(definition, dict):
            self.problems.append("State machine at {} is not an object".format(path))
            return self.problems

        start_at = definition.get("StartAt")
        states = definition.get("States")

        if not isinstance(states, dict):
            self.problems.append("No States object found at {}".format(path))
            return self.problems
        if not isinstance(start_at, str) or not start_at:
            self.problems.append("Missing StartAt in state machine at {}".format(path))
        elif start_at not in states:
            self.problems.append(
                'StartAt value "{}" not found in States field at {}'.format(start_at, path)
            )

        for name, state in states.items():
            self.check_state(name, state, states, "{}.States.{}".format(path, name))

        return self.problems

    def check_target(self, target, states, path, field):
        if not isinstance(target, str) or target not in states:
            self.problems.append(
                'No state found named "{}", referenced at {}.{}'.format(target, path, field)
            )

    def check_state(self, name, state, states, path):
        if not isinstance(state, dict):
            self.problems.append("State {} is not an object".format(path))
            return

        state_type = state.get("Type")
        if state_type not in STATE_TYPES:
            self.problems.append(
                'State "{}" has an illegal Type "{}"'.format(name, state_type)
            )
            return

        if "Next" in state and state_type not in ("Succeed", "Fail", "Choice"):
            self.check_target(state["Next"], states, path, "Next")

        if state_type == "Choice":
            self.check_choice_state(state, states, path)
        elif state_type == "Wait":
            fields = wait_fields(state)
            if len(fields) != 1:
                self.problems.append(
                    "Wait state {} must contain exactly one of {}, found {}".format(
                        path, ", ".join(WAIT_FIELDS), fields or "none"
                    )
                )
        elif state_type == "Parallel":
            branches = state.get("Branches")
            if not isinstance(branches, list) or len(branches) == 0:
                self.problems.append(
                    "Parallel state {} must have a non-empty Branches array".format(path)
                )
            else:
                for i, branch in enumerate(branches):
                    self.validate(branch, "{}.Branches[{}]".format(path, i))
        elif state_type == "Map":
            iterator = get_iterator(state)
            if iterator is None:
                self.problems.append("Map state {} has no Iterator".format(path))
            else:
                self.validate(iterator, path + ".Iterator")
            if "MaxConcurrency" in state and not is_max_concurrency(state["MaxConcurrency"]):
                self.problems.append(
                    "Map state {} MaxConcurrency must be a non-negative integer".format(path)
                )

    def check_choice_state(self, state, states, path):
        choices = state.get("Choices")
        if not isinstance(choices, list) or len(choices) == 0:
            self.problems.append(
                "Choice state {} must have a non-empty Choices array".format(path)
            )
            return

        for i, choice in enumerate(choices):
            choice_path = "{}.Choices[{}]".format(path, i)
            if not isinstance(choice, dict):
                self.problems.append("Choice rule {} is not an object".format(choice_path))
            else:
                self.check_target(choice.get("Next"), states, choice_path, "Next")

        if "Default" in state:
            self.check_target(state["Default"], states, path, "Default")


def validate_state_machine(definition):
    """
    Raise DefinitionError describing every problem found in definition.
    """
    problems = StateMachineValidator().validate(definition)
    if problems:
        raise DefinitionError(
            "Invalid state machine definition: " + "; ".join(problems)
        )
    return definition
