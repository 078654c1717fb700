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
https://states-language.net/spec.html#choice-state

Evaluation of Choice Rules. A rule names a Variable (a Path into the state's
effective input), exactly one comparison operator and the value to compare
with, or it combines nested rules with And, Or and Not. Comparisons between
mismatched types simply don't match. A Variable that isn't present in the
input never matches either, IsPresent being the one operator that can observe
the absence.

Operators outside the supported set are a definition error, but one that is
only discovered when the rule is actually evaluated.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import fnmatch, operator, re
from datetime import datetime, timezone, timedelta

from asl_offline_engine.asl_exceptions import DefinitionError, PathMatchFailure
from asl_offline_engine.state_engine_paths import apply_path

RFC3339_REGEX = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

# Fields of a Choice Rule that are not comparison operators.
NON_OPERATOR_FIELDS = ("Variable", "Next", "Comment")

COMPARISONS = {
    "StringEquals": ("string", operator.eq),
    "StringLessThan": ("string", operator.lt),
    "StringGreaterThan": ("string", operator.gt),
    "StringLessThanEquals": ("string", operator.le),
    "StringGreaterThanEquals": ("string", operator.ge),
    "NumericEquals": ("numeric", operator.eq),
    "NumericLessThan": ("numeric", operator.lt),
    "NumericGreaterThan": ("numeric", operator.gt),
    "NumericLessThanEquals": ("numeric", operator.le),
    "NumericGreaterThanEquals": ("numeric", operator.ge),
    "BooleanEquals": ("boolean", operator.eq),
    "TimestampEquals": ("timestamp", operator.eq),
    "TimestampLessThan": ("timestamp", operator.lt),
    "TimestampGreaterThan": ("timestamp", operator.gt),
    "TimestampLessThanEquals": ("timestamp", operator.le),
    "TimestampGreaterThanEquals": ("timestamp", operator.ge),
}

TYPE_TESTS = ("IsNull", "IsPresent", "IsNumeric", "IsString", "IsBoolean", "IsTimestamp")

SUPPORTED_OPERATORS = frozenset(
    list(COMPARISONS)
    + [name + "Path" for name in COMPARISONS]
    + ["StringMatches"]
    + list(TYPE_TESTS)
)


def parse_rfc3339_datetime(rfc3339):
    """
    Parse an RFC3339 (https://www.ietf.org/rfc/rfc3339.txt) format string into
    a timezone aware datetime. Used by the Wait state to compute delays and by
    the Timestamp Choice operators, which compare instants rather than strings
    as a Zulu and an offset representation can denote the same time.
    """
    match = RFC3339_REGEX.match(rfc3339.strip())
    if not match:
        raise ValueError("'{}' is not an RFC3339 timestamp".format(rfc3339))

    date, time_of_day, fraction, offset = match.groups()
    fraction = (fraction or ".0")[:7]  # strptime %f takes at most 6 digits
    raw_datetime = datetime.strptime(
        date + "T" + time_of_day + fraction, "%Y-%m-%dT%H:%M:%S.%f"
    )

    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        delta = timedelta(hours=int(offset[1:3]), minutes=int(offset[4:6]))
        tz = timezone(-delta if offset[0] == "-" else delta)
    return raw_datetime.replace(tzinfo=tz)

def isnumber(x):
    return isinstance(x, (int, float)) and not isinstance(x, bool)

def istimestamp(x):
    if not isinstance(x, str):
        return False
    try:
        parse_rfc3339_datetime(x)
        return True
    except ValueError:
        return False

def compare(kind, op, variable, value):
    if kind == "string":
        return isinstance(variable, str) and isinstance(value, str) and op(variable, value)
    if kind == "numeric":
        return isnumber(variable) and isnumber(value) and op(variable, value)
    if kind == "boolean":
        return isinstance(variable, bool) and isinstance(value, bool) and op(variable, value)
    # timestamp
    if not (istimestamp(variable) and istimestamp(value)):
        return False
    return op(parse_rfc3339_datetime(variable), parse_rfc3339_datetime(value))

def string_matches(variable, pattern):
    """
    https://docs.python.org/3/library/fnmatch.html
    ASL only has the * wildcard with \\* as a literal asterisk, so escape [
    to stop fnmatch treating it as a sequence and map \\* to fnmatch's [*].
    """
    if not isinstance(variable, str) or not isinstance(pattern, str):
        return False
    pattern = pattern.replace("[", "[[]").replace("\\*", "[*]").replace("?", "[?]")
    return fnmatch.fnmatchcase(variable, pattern)

def get_operator(rule, state_name):
    operators = [key for key in rule if key not in NON_OPERATOR_FIELDS]
    if len(operators) != 1:
        raise DefinitionError(
            "Choice rule {} in state \"{}\" must have exactly one operator".format(
                rule, state_name
            ),
            state_name
        )
    return operators[0]

def evaluate_rule(rule, input, context, state_name):
    """
    Return True if the Choice Rule matches input.
    """
    op = get_operator(rule, state_name)
    value = rule[op]

    if op == "And":
        return all(evaluate_rule(r, input, context, state_name) for r in value)
    if op == "Or":
        return any(evaluate_rule(r, input, context, state_name) for r in value)
    if op == "Not":
        return not evaluate_rule(value, input, context, state_name)

    if op not in SUPPORTED_OPERATORS:
        message = "Unsupported Choice operator \"{}\" in state \"{}\"".format(
            op, state_name
        )
        raise DefinitionError(message, state_name)

    try:
        variable = apply_path(input, context, rule.get("Variable"))
        present = True
    except PathMatchFailure:
        variable = None
        present = False

    if op == "IsPresent":
        return present == value
    if not present:
        return False

    if op == "IsNull":
        return (variable is None) == value
    if op == "IsNumeric":
        return isnumber(variable) == value
    if op == "IsString":
        return isinstance(variable, str) == value
    if op == "IsBoolean":
        return isinstance(variable, bool) == value
    if op == "IsTimestamp":
        return istimestamp(variable) == value
    if op == "StringMatches":
        return string_matches(variable, value)

    if op.endswith("Path"):  # Variable to variable comparison
        op = op[:-4]
        try:
            value = apply_path(input, context, value)
        except PathMatchFailure:
            return False

    kind, comparison = COMPARISONS[op]
    return compare(kind, comparison, variable, value)

def choose(state, input, context, state_name):
    """
    Evaluate the Choices of a Choice state in declared order and return the
    Next of the first matching rule, the Default if nothing matched, or None.
    """
    for rule in state.get("Choices", []):
        if evaluate_rule(rule, input, context, state_name):
            return rule.get("Next")
    return state.get("Default")
