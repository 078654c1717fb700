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
Defines the exceptions raised while interpreting an ASL state machine.

Interpreter faults derive from ExecutionError and always abort the whole run.
WorkflowFail is deliberately *not* an ExecutionError, it is raised when the
state machine itself reaches a Fail state, which is a normal (if unhappy)
terminal outcome and callers need to be able to tell the two apart.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3


class ExecutionError(Exception):
    def __init__(self, message, state_name=None):
        super().__init__(message)
        self.state_name = state_name


class DefinitionError(ExecutionError):
    pass


class HandlerResolutionError(ExecutionError):
    pass


HandlerNotFound = HandlerResolutionError


class HandlerRuntimeError(ExecutionError):
    def __init__(self, message, state_name=None, error=None):
        super().__init__(message, state_name)
        self.error = error


class ResultPathMatchFailure(ExecutionError):
    pass


class ParameterPathFailure(ExecutionError):
    pass


class IntrinsicFailure(ExecutionError):
    pass


# Not an ASL error name, used by the Choice state path handling.
class PathMatchFailure(ExecutionError):
    pass


class WorkflowFail(Exception):
    """
    Raised when execution reaches a Fail state. Error and Cause are both
    optional in this interpreter, to_dict() only includes the ones declared.
    """
    def __init__(self, error=None, cause=None, state_name=None):
        super().__init__(
            "State \"{}\" failed with Error: {} Cause: {}".format(
                state_name, error, cause
            )
        )
        self.error = error
        self.cause = cause
        self.state_name = state_name

    def to_dict(self):
        failure = {}
        if self.error is not None:
            failure["Error"] = self.error
        if self.cause is not None:
            failure["Cause"] = self.cause
        return failure
