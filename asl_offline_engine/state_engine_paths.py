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
https://states-language.net/spec.html#filters

The event threaded through an execution is a JSON-like value. States read from
it with Paths, may reshape their effective input with a Payload Template
(Parameters) and write their result back into it with ResultPath. This module
holds those data-flow rules so that the state strategies never need to poke
at the event directly.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import copy, re, uuid

"""
ASL paths use JSONPath.
https://goessner.net/articles/JsonPath/
http://www.ultimate.com/phil/python/#jsonpath
"""
from jsonpath import jsonpath  # pip3 install jsonpath

from asl_offline_engine.asl_exceptions import (
    IntrinsicFailure,
    ParameterPathFailure,
    PathMatchFailure,
    ResultPathMatchFailure,
)

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json


def apply_jsonpath(input, path="$", throw_exception_on_failed_match=True):
    """
    Apply a JSONPath query to input. A failed match either raises
    PathMatchFailure or returns {} depending on throw_exception_on_failed_match,
    the Choice state relies on the exception to detect a missing Variable.
    """
    if input is None or path is None:
        return {}
    if path == "$":
        return input
    result = jsonpath(input, path)

    if result is False:
        if throw_exception_on_failed_match:
            raise PathMatchFailure(
                "Invalid path '{}' applied to input '{}'".format(path, input)
            )
        return {}

    """
    Python jsonpath returns a list of matches, but a single match is more
    useful as the item itself, unless the path used an array slice in which
    case a list is what the author intuitively expects.
    """
    if len(result) == 1:
        path_has_slice = re.search(r"\[.*:.*\]", path)
        if not path_has_slice:
            return result[0]

    return result

def apply_path(input, context, path="$", throw_exception_on_failed_match=True):
    """
    https://states-language.net/spec.html#path

    A Path beginning with "$$" addresses the Context Object rather than the
    input. The first dollar sign is stripped and the rest applied to context.
    """
    if path is None or not isinstance(path, str):
        return {}
    if not path.startswith("$"):
        raise ParameterPathFailure("{} must be a JSONPath".format(path))
    if path.startswith("$$"):
        return apply_jsonpath(context, path[1:], throw_exception_on_failed_match)
    return apply_jsonpath(input, path, throw_exception_on_failed_match)

def apply_resultpath(input, result, path="$"):
    """
    Performs the ResultPath logic, see https://states-language.net/spec.html#filters

    "$" (the default) means the result replaces the input. Any other Reference
    Path is written into the input *in place*, creating missing intermediate
    objects on the way, and the mutated input is returned. A null ResultPath
    discards the result and passes the input through.
    """
    def update_path(target, keys, value):
        if len(keys) == 0:
            return value
        key = keys.pop(0)
        if isinstance(target, list):
            try:
                i = int(key)
                target[i] = update_path(target[i], keys, value)
            except (ValueError, IndexError) as e:
                raise ResultPathMatchFailure(str(e))
        elif isinstance(target, dict):
            if key.isdigit():
                raise ResultPathMatchFailure(
                    "Object index {} is not a valid key string".format(key)
                )
            target[key] = update_path(target.get(key, {}), keys, value)
        else:
            raise ResultPathMatchFailure(
                "Cannot use key {} to index a primitive type".format(key)
            )
        return target

    if input is None:
        input = {}
    if path is None:
        return input
    if path == "$":
        return result
    if path.startswith("$$"):
        raise ResultPathMatchFailure(
            "The value of \"ResultPath\" MUST NOT begin with \"$$\""
        )

    keys = re.findall(r"[^$.[\]'\"]+", path)  # Split the reference path
    return update_path(input, keys, result)

def evaluate_payload_template(input, context, template):
    """
    https://states-language.net/spec.html#payload-template

    Recursively clones template. Any field whose name ends in ".$" is renamed
    without the suffix and its value replaced: "$$..." is applied to the
    Context Object, "$..." to input and anything else is evaluated as an
    Intrinsic Function. A None template means "no Parameters", so the input
    is returned untouched.
    """
    def evaluate(value):
        if value == "$":
            return clone_json(input)
        if value.startswith("$"):
            try:
                return apply_path(input, context, value)
            except PathMatchFailure as e:
                raise ParameterPathFailure(str(e))
        return evaluate_intrinsic_function(value, input, context)

    def clone(node):
        if isinstance(node, list):
            return [clone(item) for item in node]
        if isinstance(node, dict):
            target = {}
            for k, v in node.items():
                if k.endswith(".$") and isinstance(v, str):
                    target[k[:-2]] = evaluate(v)
                else:
                    target[k] = clone(v)
            return target
        return node

    if template is None:
        return input
    return clone(template)

def clone_json(value):
    return copy.deepcopy(value)

def evaluate_intrinsic_function(intrinsic, input, context):
    """
    ASL Appendix B: List of Intrinsic Functions:
    https://states-language.net/#appendix-b
    Only the commonly used subset is supported here.
    """
    def require(args, count, name):
        if len(args) != count:
            raise IntrinsicFailure(
                "{} failed, requires {} argument(s).".format(name, count)
            )

    def asl_intrinsic_Format(args):
        if len(args) < 1:
            raise IntrinsicFailure(
                "States.Format failed, requires one or more arguments."
            )
        try:
            return args[0].format(*args[1:])
        except (IndexError, KeyError, ValueError, AttributeError) as e:
            raise IntrinsicFailure("States.Format failed with {}.".format(e))

    def asl_intrinsic_StringToJson(args):
        require(args, 1, "States.StringToJson")
        try:
            return json.loads(args[0])
        except (TypeError, ValueError) as e:
            raise IntrinsicFailure("States.StringToJson failed with {}.".format(e))

    def asl_intrinsic_JsonToString(args):
        require(args, 1, "States.JsonToString")
        return json.dumps(args[0])

    def asl_intrinsic_Array(args):
        return args

    def asl_intrinsic_ArrayLength(args):
        require(args, 1, "States.ArrayLength")
        if not isinstance(args[0], list):
            raise IntrinsicFailure(
                "States.ArrayLength failed, arg[0] is not an array."
            )
        return len(args[0])

    def asl_intrinsic_ArrayGetItem(args):
        require(args, 2, "States.ArrayGetItem")
        array, index = args
        if not isinstance(array, list) or not isinstance(index, int):
            raise IntrinsicFailure(
                "States.ArrayGetItem failed, expects an array and an integer index."
            )
        if index < 0 or index >= len(array):
            raise IntrinsicFailure(
                "States.ArrayGetItem failed, index is out of bounds."
            )
        return array[index]

    def asl_intrinsic_MathAdd(args):
        require(args, 2, "States.MathAdd")
        if not all(isinstance(a, int) and not isinstance(a, bool) for a in args):
            raise IntrinsicFailure(
                "States.MathAdd failed, both arguments must be integers."
            )
        return args[0] + args[1]

    def asl_intrinsic_UUID(args):
        require(args, 0, "States.UUID")
        return str(uuid.uuid4())

    intrinsics = {
        "States.Format": asl_intrinsic_Format,
        "States.StringToJson": asl_intrinsic_StringToJson,
        "States.JsonToString": asl_intrinsic_JsonToString,
        "States.Array": asl_intrinsic_Array,
        "States.ArrayLength": asl_intrinsic_ArrayLength,
        "States.ArrayGetItem": asl_intrinsic_ArrayGetItem,
        "States.MathAdd": asl_intrinsic_MathAdd,
        "States.UUID": asl_intrinsic_UUID,
    }

    if "(" not in intrinsic or not intrinsic.rstrip().endswith(")"):
        raise IntrinsicFailure("{} is not an Intrinsic Function.".format(intrinsic))

    func, args = intrinsic.split("(", 1)
    func = func.strip()
    args = args.rsplit(")", 1)[0]
    if func not in intrinsics:
        raise IntrinsicFailure(
            "Intrinsic Function {} is not supported.".format(func)
        )

    """
    Arguments may be apostrophe delimited strings (with \\' escapes), nested
    Intrinsic Functions, Paths, numbers, null or booleans.
    """
    arglist = re.findall(r"'.*?(?<!\\)'|States\..*?\)|[^\s,]+", args)
    for i, arg in enumerate(arglist):
        if arg.startswith("'"):
            arglist[i] = arg[1:-1].replace("\\'", "'")
        elif arg.startswith("$"):
            arglist[i] = apply_path(input, context, arg)
        elif arg.startswith("States."):
            arglist[i] = evaluate_intrinsic_function(arg, input, context)
        elif arg == "null":
            arglist[i] = None
        elif arg in ("true", "false"):
            arglist[i] = arg == "true"
        else:
            try:
                arglist[i] = int(arg)
            except ValueError:
                try:
                    arglist[i] = float(arg)
                except ValueError:
                    raise IntrinsicFailure(
                        "Intrinsic Function {}, Invalid argument {}.".format(func, arg)
                    )

    return intrinsics[func](arglist)
