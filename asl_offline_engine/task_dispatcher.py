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
Resolves Task states to user supplied handlers and invokes them.

Handlers are registered in a dict keyed by task identifier. The identifier is
looked up first as the Task state's name, then as the function name of its
Resource ARN and finally as the raw Resource string. An entry is either the
handler callable itself or, mirroring a serverless function definition, a
dict of the form {"handler": callable, "environment": {...}}.

Each invocation gets a fresh environment: a copy of the baseline captured when
the dispatcher was created, overlaid with the function's and then the state's
Environment overrides. The environment travels on the Context object rather
than being written to os.environ, so concurrent Tasks can't see each other's
overrides.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

import asyncio, functools, inspect, os, time
from concurrent.futures import ThreadPoolExecutor

from asl_offline_engine.arn import resource_function_name
from asl_offline_engine.asl_exceptions import (
    HandlerResolutionError,
    HandlerRuntimeError,
)
from asl_offline_engine.context import Context
from asl_offline_engine.logger import init_logging

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json


class TaskDispatcher(object):
    def __init__(self, handlers=None, config=None, metrics=None):
        """
        :param handlers: Map of task identifier to handler or handler definition
        :type handlers: dict
        :param config: The state_engine section of the configuration
        :type config: dict
        :param metrics: The engine's metrics, see asl_offline_engine.metrics
        """
        self.logger = init_logging(log_name="asl_offline_engine")
        config = config or {}
        self.handlers = handlers or {}
        self.metrics = metrics

        """
        Synchronous handlers run on the dispatcher's own thread pool rather
        than the loop's default executor. asyncio.run() joins the default
        executor on exit, so a handler thread still running in an aborted
        sibling scope would otherwise delay reporting the abort until it
        returned. Threads left running finish in the background.
        """
        self.executor = ThreadPoolExecutor(thread_name_prefix="asl_task")

        """
        Capture the baseline environment once. STEP_IS_OFFLINE lets handlers
        detect that they are being driven locally rather than by AWS.
        """
        self.baseline_environment = dict(os.environ)
        self.baseline_environment["STEP_IS_OFFLINE"] = "true"
        self.baseline_environment.update(
            {k: str(v) for k, v in config.get("environment", {}).items()}
        )

    def resolve(self, state_name, state):
        """
        Return (function_name, handler, function_environment) for the given
        Task state or raise HandlerResolutionError.
        """
        resource = state.get("Resource")
        candidates = [state_name]
        if resource:
            candidates.append(resource_function_name(resource))
            candidates.append(resource)

        for function_name in candidates:
            if function_name in self.handlers:
                definition = self.handlers[function_name]
                if isinstance(definition, dict):
                    handler = definition.get("handler")
                    environment = definition.get("environment", {})
                else:
                    handler = definition
                    environment = {}

                if not callable(handler):
                    raise HandlerResolutionError(
                        "Function \"{}\" for state \"{}\" is not callable".format(
                            function_name, state_name
                        ),
                        state_name
                    )
                return function_name, handler, environment

        message = "Function \"{}\" is not present in the task handlers".format(state_name)
        self.logger.error(message)
        raise HandlerResolutionError(message, state_name)

    def build_environment(self, function_environment, state_environment):
        # Restore the baseline, then overlay function and state overrides.
        environment = dict(self.baseline_environment)
        for overrides in (function_environment, state_environment):
            if overrides:
                environment.update({k: str(v) for k, v in overrides.items()})
        return environment

    async def execute_task(self, state_name, state, parameters, execution_name=None):
        """
        Invoke the handler bound to a Task state with (parameters, context)
        and return the result passed to the Context's completion callback.

        Synchronous handlers run on the dispatcher's thread pool so a blocking
        handler doesn't stall other branches; coroutine handlers are awaited.
        There is no timeout, a handler that never completes hangs the run.
        """
        function_name, handler, function_environment = self.resolve(state_name, state)
        environment = self.build_environment(
            function_environment, state.get("Environment")
        )

        loop = asyncio.get_running_loop()
        context = Context(
            state_name,
            environment=environment,
            function_name=function_name,
            execution_name=execution_name,
            loop=loop,
        )

        if self.metrics:
            self.metrics.task_scheduled(function_name)
        start_time = time.time()

        if inspect.iscoroutinefunction(handler):
            invocation = asyncio.ensure_future(handler(parameters, context))
        else:
            invocation = loop.run_in_executor(
                self.executor, functools.partial(handler, parameters, context)
            )

        try:
            await asyncio.wait(
                {invocation, context.future}, return_when=asyncio.FIRST_COMPLETED
            )
            if invocation.done() and invocation.exception() is not None:
                if not context.completed:
                    self.fail_task(state_name, function_name, invocation.exception())
            error, result = await context.wait()
            if not invocation.done():
                # Handler completed the Context but is still running.
                invocation.add_done_callback(
                    functools.partial(self.on_late_return, state_name)
                )
        except asyncio.CancelledError:
            # Aborted by a failing sibling, a running executor thread can't be stopped.
            invocation.cancel()
            raise

        if error is not None:
            self.fail_task(state_name, function_name, error)

        if self.metrics:
            self.metrics.task_succeeded(function_name, time.time() - start_time)
        return result

    def on_late_return(self, state_name, invocation):
        if not invocation.cancelled() and invocation.exception() is not None:
            self.logger.warning(
                "Function \"{}\" raised {!r} after signalling completion".format(
                    state_name, invocation.exception()
                )
            )

    def fail_task(self, state_name, function_name, error):
        if self.metrics:
            self.metrics.task_failed(function_name)
        message = "Error in function \"{}\": {}".format(
            state_name, self.describe_error(error)
        )
        self.logger.error(message)
        raise HandlerRuntimeError(message, state_name, error)

    def describe_error(self, error):
        if isinstance(error, BaseException):
            return "{}: {}".format(type(error).__name__, error)
        try:
            return json.dumps(error)
        except (TypeError, ValueError, OverflowError):
            return str(error)
