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
The Context Object handed to Task handlers.

A handler is invoked as handler(event, context) and signals completion by
calling context.complete(error, result) (or context.done, the Lambda style
alias), context.succeed(result) or context.fail(error) exactly once. There is
one Context per Task invocation, it is owned by the scope that created it and
it is never shared with sibling Parallel branches or Map iterations.

Completion resolves an asyncio Future that the engine awaits, so a handler may
complete synchronously, later from a callback, or from another thread.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, uuid

from asl_offline_engine.logger import init_logging


class Context(object):
    def __init__(self, state_name, environment=None, function_name=None,
                 execution_name=None, loop=None):
        """
        :param state_name: Name of the Task state being executed
        :param environment: The per-invocation environment, a fresh copy of
         the baseline overlaid with the task's own overrides
        :param function_name: The handler identifier the state resolved to
        :param execution_name: Name of the execution this Task belongs to
        """
        self.logger = init_logging(log_name="asl_offline_engine")
        self.state_name = state_name
        self.environment = environment if environment is not None else {}
        self.function_name = function_name or state_name
        self.execution_name = execution_name
        self.aws_request_id = str(uuid.uuid4())

        self.loop = loop or asyncio.get_running_loop()
        self.future = self.loop.create_future()

    def complete(self, error=None, result=None):
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is self.loop:
            self._set_outcome(error, result)
        elif self.loop.is_closed():
            # The execution was aborted while this handler was still running.
            self.logger.warning(
                "Task \"{}\" completed after its execution ended, ignoring".format(
                    self.state_name
                )
            )
        else:
            self.loop.call_soon_threadsafe(self._set_outcome, error, result)

    done = complete

    def succeed(self, result=None):
        self.complete(None, result)

    def fail(self, error):
        self.complete(error if error is not None else "Unspecified error")

    def _set_outcome(self, error, result):
        if self.future.done():
            self.logger.warning(
                "Task \"{}\" completed more than once, ignoring".format(self.state_name)
            )
            return
        self.future.set_result((error, result))

    @property
    def completed(self):
        return self.future.done()

    async def wait(self):
        """
        Suspend until the handler signals completion, returns (error, result).
        """
        return await self.future
