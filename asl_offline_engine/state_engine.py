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
-------------------------------- READ ME FIRST ---------------------------------
Note that the definition, the Context Object ($$) and the execution description
returned by execute() deliberately use different key styles. ASL definitions
and the Context Object use fields starting with capitals, as per the Amazon
States Language, whereas the execution description follows the camel case of
the DescribeExecution API. Be aware of this if suddenly overcome by the urge to
"make everything consistent".
--------------------------------------------------------------------------------

The StateEngine drives one execution of a state machine. Each scope (the main
flow, each Parallel branch and each Map iteration) is run by process(), a loop
that dispatches the current state to its asl_state_<Type> strategy, receives
back the name of the next state and the state's output, and carries on until a
strategy reports that the scope has ended. Parallel and Map strategies run
their child scopes by calling process() again with the child's own States, so
nesting is just recursion with fresh local accumulators.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3


import asyncio, time, uuid, opentracing

from datetime import datetime, timezone

from asl_offline_engine.arn import create_arn
from asl_offline_engine.asl_exceptions import (
    DefinitionError,
    ExecutionError,
    PathMatchFailure,
    WorkflowFail,
)
from asl_offline_engine.choice_rules import choose, isnumber, parse_rfc3339_datetime
from asl_offline_engine.definition import (
    STATE_TYPES,
    get_iterator,
    is_max_concurrency,
    is_terminal,
    validate_state_machine,
    wait_fields,
)
from asl_offline_engine.logger import bind_execution, init_logging, unbind_execution
from asl_offline_engine.metrics import create_metrics
from asl_offline_engine.state_engine_paths import (
    apply_path,
    apply_resultpath,
    clone_json,
    evaluate_payload_template,
)
from asl_offline_engine.task_dispatcher import TaskDispatcher

try:  # Attempt to use ujson if available https://pypi.org/project/ujson/
    import ujson as json
except ImportError:  # Fall back to standard library json
    import json


def now_rfc3339():
    return datetime.now(timezone.utc).astimezone().isoformat()

def merge_result(data, context, result, state):
    """
    Boiler plate to apply both ResultPath and OutputPath
    """
    output = apply_resultpath(data, result, state.get("ResultPath", "$"))
    return apply_path(output, context, state.get("OutputPath", "$"))


class StateEngine(object):
    def __init__(self, config=None, handlers=None, log=None):
        """
        :param config: Configuration dictionary, see WorkflowEngine for defaults
        :type config: dict
        :param handlers: Map of task identifier to handler, see TaskDispatcher
        :type handlers: dict
        :param log: The log(line) sink, defaults to the engine logger's info
        :type log: callable
        """
        self.logger = init_logging(log_name="asl_offline_engine")
        self.logger.info("Creating StateEngine, using {} JSON parser".format(json.__name__))

        config = config or {}
        se = config.get("state_engine", {})
        self.detailed_log = se.get("detailed_log", False)
        self.map_concurrency = int(se.get("map_concurrency", 1))
        self.validate_definition = se.get("validate_definition", True)
        self.log = log or self.logger.info

        self.metrics = create_metrics(config.get("metrics"))
        self.task_dispatcher = TaskDispatcher(handlers, se, self.metrics)

        """
        The "asl_state_" prefixed strategies form a closed table, one per ASL
        state type. Definitions are validated against STATE_TYPES, so keep
        the two in step.
        """
        self.strategies = {
            "Task": self.asl_state_Task,
            "Choice": self.asl_state_Choice,
            "Wait": self.asl_state_Wait,
            "Parallel": self.asl_state_Parallel,
            "Map": self.asl_state_Map,
            "Pass": self.asl_state_Pass,
            "Succeed": self.asl_state_Succeed,
            "Fail": self.asl_state_Fail,
        }
        assert set(self.strategies) == set(STATE_TYPES)

    def execution_log(self, line):
        if self.detailed_log:
            self.log(line)

    def run(self, definition, event=None, name=None, state_machine_name="StateMachine"):
        """
        Synchronous wrapper around execute() for callers without an event loop.
        """
        return asyncio.run(self.execute(definition, event, name, state_machine_name))

    async def execute(self, definition, event=None, name=None, state_machine_name="StateMachine"):
        """
        Run definition to completion with event as its input.

        Returns a dict in the style of DescribeExecution. A state machine that
        ends in a Fail state returns status "FAILED" with its error and cause,
        interpreter and handler faults are raised as ExecutionError subclasses.
        """
        if not isinstance(definition, dict) or not definition.get("StartAt"):
            raise DefinitionError("Missing `StartAt` in definition")
        if self.validate_definition:
            validate_state_machine(definition)

        event = {} if event is None else event
        name = name or str(uuid.uuid4())
        state_machine_arn = create_arn(
            service="states", resource_type="stateMachine", resource=state_machine_name
        )
        execution_arn = create_arn(
            service="states",
            resource_type="execution",
            resource=state_machine_name + ":" + name,
        )

        """
        The Context Object visible to "$$" paths.
        https://docs.aws.amazon.com/step-functions/latest/dg/input-output-contextobject.html
        """
        context = {
            "Execution": {
                "Id": execution_arn,
                "Name": name,
                "Input": clone_json(event),
                "StartTime": now_rfc3339(),
            },
            "StateMachine": {"Id": state_machine_arn, "Name": state_machine_name},
        }

        execution = {
            "executionArn": execution_arn,
            "stateMachineArn": state_machine_arn,
            "name": name,
            "status": "RUNNING",
            "input": context["Execution"]["Input"],
            "output": None,
            "error": None,
            "cause": None,
            "startDate": time.time(),
            "stopDate": None,
        }

        bind_execution(execution=name)
        if self.metrics:
            self.metrics.execution_started(state_machine_name)
        self.log("Starting execution {} of {}".format(name, state_machine_name))

        states = definition.get("States", {})
        start_at = definition["StartAt"]
        try:
            with opentracing.global_tracer().start_active_span(
                operation_name="StartExecution",
                tags={"component": "state_engine", "execution_arn": execution_arn},
            ) as scope:
                try:
                    execution["output"] = await self.process(
                        states.get(start_at), start_at, event, states, context
                    )
                    execution["status"] = "SUCCEEDED"
                except WorkflowFail as e:
                    execution["status"] = "FAILED"
                    execution.update({k.lower(): v for k, v in e.to_dict().items()})
                    scope.span.set_tag("error", True)
                except ExecutionError as e:
                    execution["status"] = "ABORTED"
                    scope.span.set_tag("error", True)
                    self.logger.error(
                        "Execution {} aborted: {}: {}".format(name, type(e).__name__, e)
                    )
                    raise
        finally:
            execution["stopDate"] = time.time()
            if self.metrics:
                self.metrics.execution_stopped(
                    state_machine_name,
                    execution["status"],
                    execution["stopDate"] - execution["startDate"]
                )
            unbind_execution("execution")

        self.log("Execution {} finished with status {}".format(name, execution["status"]))
        return execution

    async def process(self, state, state_name, event, states, context):
        """
        Run one scope from state_name until it terminates and return its output.

        A None state means there is nothing to run (e.g. an empty flow) and the
        scope ends successfully with the event it was given. A transition to a
        name that isn't in this scope's States is a DefinitionError.
        """
        while state is not None:
            state_type = state.get("Type") if isinstance(state, dict) else None
            strategy = self.strategies.get(state_type)
            if strategy is None:
                raise DefinitionError(
                    "State \"{}\" has an illegal Type \"{}\": Illegal State Machine.".format(
                        state_name, state_type
                    ),
                    state_name
                )

            # Each state sees its own copy of the context, so scopes can't leak.
            state_context = dict(context)
            state_context["State"] = {"Name": state_name, "EnteredTime": now_rfc3339()}

            self.execution_log(
                "~~~~~~~~~~~~~~~~~~~~~~~~~~~ {} started ~~~~~~~~~~~~~~~~~~~~~~~~~~~".format(state_name)
            )
            with opentracing.global_tracer().start_active_span(
                operation_name=state_type + ":" + state_name,
                tags={"component": "state_engine", "state_type": state_type},
            ):
                try:
                    next_state_name, event = await strategy(
                        state, state_name, event, state_context
                    )
                except ExecutionError as e:
                    if e.state_name is None:
                        e.state_name = state_name
                    raise
            self.execution_log(
                "~~~~~~~~~~~~~~~~~~~~~~~~~~~ {} finished ~~~~~~~~~~~~~~~~~~~~~~~~~~~".format(state_name)
            )

            if next_state_name is None:
                break
            if next_state_name not in states:
                raise DefinitionError(
                    "State \"{}\" transitions to \"{}\" which does not exist".format(
                        state_name, next_state_name
                    ),
                    state_name
                )
            state_name, state = next_state_name, states[next_state_name]

        return event

    async def process_definition(self, definition, event, context):
        """
        Run a Parallel Branch or Map Iterator sub-definition as its own scope.
        """
        states = definition.get("States", {})
        start_at = definition.get("StartAt")
        return await self.process(states.get(start_at), start_at, event, states, context)

    async def gather_scopes(self, coroutines):
        """
        Run child scopes concurrently and return their outputs in the order the
        coroutines were given. The first scope to raise aborts the others.
        """
        tasks = [asyncio.ensure_future(coroutine) for coroutine in coroutines]
        if not tasks:
            return []
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task in done and not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        return [task.result() for task in tasks]

    def next_state(self, state):
        return None if is_terminal(state) else state["Next"]

    # --------------------------------------------------------------------------
    # State strategies. Each takes (state, state_name, event, context) and
    # returns (next_state_name, output), with None meaning the scope has ended.
    # --------------------------------------------------------------------------

    async def asl_state_Task(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#task-state

        The handler's result (the value it passed to the Context's completion
        callback) is placed by ResultPath, replacing the input by default.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        parameters = evaluate_payload_template(input, context, state.get("Parameters"))

        result = await self.task_dispatcher.execute_task(
            state_name, state, parameters, context["Execution"]["Name"]
        )
        if result is None:
            result = {}

        return self.next_state(state), merge_result(event, context, result, state)

    async def asl_state_Choice(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#choice-state

        Rules are evaluated in declared order and the first match wins. If no
        rule matches and there's no Default the scope simply ends with its
        current input, rather than raising States.NoChoiceMatched.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        next_state = choose(state, input, context, state_name)
        output = apply_path(input, context, state.get("OutputPath", "$"))

        if next_state is None:
            self.logger.warning(
                "The 'Choice' state \"{}\" failed to find a match for the "
                "condition field extracted from its input and has no Default, "
                "ending the flow.".format(state_name)
            )
        return next_state, output

    def get_wait_seconds(self, state, state_name, input, context):
        """
        A Wait state MUST contain exactly one of Seconds, SecondsPath,
        Timestamp, or TimestampPath. Timestamps in the past give a zero delay.
        """
        fields = wait_fields(state)
        if len(fields) != 1:
            raise DefinitionError(
                "Wait state \"{}\" must specify exactly one of Seconds, "
                "Timestamp, SecondsPath or TimestampPath".format(state_name),
                state_name
            )

        field = fields[0]
        value = state[field]
        if field.endswith("Path"):
            try:
                value = apply_path(input, context, value)
            except PathMatchFailure:
                raise DefinitionError(
                    "An error occurred while executing the state \"{}\". The {} "
                    "parameter does not reference an input value: {}".format(
                        state_name, field, state[field]
                    ),
                    state_name
                )

        if field.startswith("Seconds"):
            if not isnumber(value):
                raise DefinitionError(
                    "Wait state \"{}\" {} value {!r} is not a number".format(
                        state_name, field, value
                    ),
                    state_name
                )
            return max(0, value)

        try:
            target = parse_rfc3339_datetime(value)
        except (ValueError, AttributeError):
            raise DefinitionError(
                "Wait state \"{}\" {} value {!r} is not an RFC3339 timestamp".format(
                    state_name, field, value
                ),
                state_name
            )
        return max(0, target.timestamp() - time.time())

    async def asl_state_Wait(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#wait-state

        The delay is an asyncio sleep so concurrent branches carry on running.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        delay = self.get_wait_seconds(state, state_name, input, context)
        self.log("Wait function {} - please wait {} seconds".format(state_name, delay))
        await asyncio.sleep(delay)
        return self.next_state(state), apply_path(input, context, state.get("OutputPath", "$"))

    async def asl_state_Pass(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#pass-state

        Without a Result the output is the effective input, so a bare Pass
        state is an identity. A ResultPath writes the Result (or a copy of the
        input, so the event never contains itself) into the event in place.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        parameters = evaluate_payload_template(input, context, state.get("Parameters"))

        if "Result" in state:
            # Copy so later in-place writes can't modify the definition.
            result = clone_json(state["Result"])
        else:
            result = parameters
            if state.get("ResultPath", "$") not in (None, "$"):
                result = clone_json(result)

        return self.next_state(state), merge_result(event, context, result, state)

    async def asl_state_Succeed(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#succeed-state

        Succeed is always terminal for its scope, any Next is ignored.
        """
        self.log("Succeed")
        input = apply_path(event, context, state.get("InputPath", "$"))
        return None, apply_path(input, context, state.get("OutputPath", "$"))

    async def asl_state_Fail(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#fail-state

        Terminates the whole execution as a failure, including any Parallel
        branches or Map iterations still running.
        """
        failure = WorkflowFail(state.get("Error"), state.get("Cause"), state_name)
        self.log("Fail")
        if failure.to_dict():
            self.log(json.dumps(failure.to_dict()))
        raise failure

    async def asl_state_Parallel(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#parallel-state

        Every branch starts from its own copy of the same input snapshot and
        runs as a separate asyncio task. The output is the list of branch
        outputs in Branches order, whatever order they finished in.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        snapshot = clone_json(input)

        branches = state.get("Branches", [])
        self.log("Building Parallel StepWorkFlow for {} ({} branches)".format(
            state_name, len(branches))
        )
        results = await self.gather_scopes(
            [self.process_definition(branch, clone_json(snapshot), context)
             for branch in branches]
        )
        return self.next_state(state), merge_result(event, context, results, state)

    async def asl_state_Map(self, state, state_name, event, context):
        """
        https://states-language.net/spec.html#map-state

        Runs the Iterator once per element of the ItemsPath array. A missing
        or non-array ItemsPath means zero iterations. Iterations are sequential
        unless MaxConcurrency (or the map_concurrency config default) allows
        more, but results are always collected in item order. The results are
        only written into the event if a ResultPath is declared.
        """
        input = apply_path(event, context, state.get("InputPath", "$"))
        items = apply_path(
            input, context, state.get("ItemsPath", "$"),
            throw_exception_on_failed_match=False
        )
        if not isinstance(items, list):
            items = []

        iterator = get_iterator(state)
        if iterator is None:
            raise DefinitionError(
                "Map state \"{}\" has no Iterator".format(state_name), state_name
            )
        item_selector = state.get("ItemSelector", state.get("Parameters"))

        def iteration(index, item):
            item_context = dict(context)
            item_context["Map"] = {"Item": {"Index": index, "Value": clone_json(item)}}
            if item_selector is None:
                item_input = clone_json(item)
            else:
                item_input = clone_json(
                    evaluate_payload_template(input, item_context, item_selector)
                )
            return self.process_definition(iterator, item_input, item_context)

        max_concurrency = state.get("MaxConcurrency", self.map_concurrency)
        if not is_max_concurrency(max_concurrency):
            raise DefinitionError(
                "Map state \"{}\" MaxConcurrency {!r} is not a non-negative integer".format(
                    state_name, max_concurrency
                ),
                state_name
            )
        if max_concurrency == 0:
            max_concurrency = max(len(items), 1)

        self.log("Building Iterator StepWorkFlow for {} ({} items)".format(
            state_name, len(items))
        )
        if max_concurrency == 1:
            results = []
            for index, item in enumerate(items):
                results.append(await iteration(index, item))
        else:
            semaphore = asyncio.Semaphore(max_concurrency)

            async def bounded_iteration(index, item):
                async with semaphore:
                    return await iteration(index, item)

            results = await self.gather_scopes(
                [bounded_iteration(index, item) for index, item in enumerate(items)]
            )

        if state.get("ResultPath"):
            event = apply_resultpath(event, results, state["ResultPath"])
        return self.next_state(state), apply_path(event, context, state.get("OutputPath", "$"))
