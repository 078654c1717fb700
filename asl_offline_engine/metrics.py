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
Prometheus metrics intended to emulate the Step Functions CloudWatch metrics.
https://docs.aws.amazon.com/step-functions/latest/dg/procedure-cw-metrics.html

Metrics are only collected when the "metrics" configuration section has
"implementation": "Prometheus", otherwise create_metrics returns None and the
engine skips all metric updates. Each Metrics instance has its own aioprometheus
Registry so that several engines (e.g. in tests) don't collide on metric names.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3

from aioprometheus import Counter, Histogram, Registry

from asl_offline_engine.logger import init_logging


class Metrics(object):
    def __init__(self, namespace=""):
        ns = namespace + "_" if namespace else ""
        self.registry = Registry()

        def counter(name, doc):
            return Counter(ns + name, doc, registry=self.registry)

        self.executions_started = counter(
            "ExecutionsStarted", "The number of started executions."
        )
        self.executions_succeeded = counter(
            "ExecutionsSucceeded", "The number of successfully completed executions."
        )
        self.executions_failed = counter(
            "ExecutionsFailed", "The number of executions that reached a Fail state."
        )
        self.executions_aborted = counter(
            "ExecutionsAborted",
            "The number of executions aborted by an interpreter or handler fault."
        )
        self.execution_time = Histogram(
            ns + "ExecutionTime",
            "The interval, in milliseconds, between the time the execution " +
            "starts and the time it closes.",
            registry=self.registry
        )
        self.lambda_functions_scheduled = counter(
            "LambdaFunctionsScheduled", "The number of scheduled task handlers."
        )
        self.lambda_functions_succeeded = counter(
            "LambdaFunctionsSucceeded", "The number of successfully completed task handlers."
        )
        self.lambda_functions_failed = counter(
            "LambdaFunctionsFailed", "The number of failed task handlers."
        )
        self.lambda_function_time = Histogram(
            ns + "LambdaFunctionTime",
            "The interval, in milliseconds, between the time the task handler " +
            "is scheduled and the time it closes.",
            registry=self.registry
        )

    def execution_started(self, state_machine):
        self.executions_started.inc({"StateMachine": state_machine})

    def execution_stopped(self, state_machine, status, duration):
        labels = {"StateMachine": state_machine}
        if status == "SUCCEEDED":
            self.executions_succeeded.inc(labels)
        elif status == "FAILED":
            self.executions_failed.inc(labels)
        else:
            self.executions_aborted.inc(labels)
        self.execution_time.observe(labels, duration * 1000)

    def task_scheduled(self, function_name):
        self.lambda_functions_scheduled.inc({"Function": function_name})

    def task_succeeded(self, function_name, duration):
        labels = {"Function": function_name}
        self.lambda_functions_succeeded.inc(labels)
        self.lambda_function_time.observe(labels, duration * 1000)

    def task_failed(self, function_name):
        self.lambda_functions_failed.inc({"Function": function_name})


def create_metrics(config):
    """
    Create a Metrics instance if Prometheus is selected in config, else None.
    """
    config = config or {}
    if config.get("implementation") != "Prometheus":
        return None

    logger = init_logging(log_name="asl_offline_engine")
    namespace = config.get("namespace", "")
    if namespace:
        logger.info("Enabling Prometheus Metrics in namespace: " + namespace)
    else:
        logger.info("Enabling Prometheus Metrics")
    return Metrics(namespace)
