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
# PYTHONPATH=.. python3 test_workflow_engine.py
#
"""
This test tests configuration loading and the metrics collected by a
WorkflowEngine.
"""

import sys
assert sys.version_info >= (3, 0) # Bomb out if not running Python3

import unittest
import json, os, tempfile
from unittest import mock
from asl_offline_engine.asl_exceptions import HandlerRuntimeError
from asl_offline_engine.metrics import Metrics, create_metrics
from asl_offline_engine.workflow_engine import WorkflowEngine, as_bool, load_config

ASL = """{
    "StartAt": "Hello",
    "States": {
        "Hello": {
            "Type": "Task",
            "Resource": "arn:aws:lambda:local:0123456789:function:Hello",
            "End": true
        }
    }
}"""

ENV_KEYS = (
    "STATE_ENGINE_DETAILED_LOG",
    "STATE_ENGINE_MAP_CONCURRENCY",
    "STATE_ENGINE_VALIDATE_DEFINITION",
    "METRICS_IMPLEMENTATION",
    "METRICS_NAMESPACE",
)


class TestWorkflowEngine(unittest.TestCase):

    def setUp(self):
        # Make sure ambient settings don't leak into the defaults tests.
        self.environ = mock.patch.dict(os.environ)
        self.environ.start()
        for key in ENV_KEYS:
            os.environ.pop(key, None)

    def tearDown(self):
        self.environ.stop()

    def test_as_bool(self):
        self.assertTrue(as_bool("True"))
        self.assertTrue(as_bool("1"))
        self.assertFalse(as_bool("false"))
        self.assertFalse(as_bool(0))

    def test_defaults(self):
        config = load_config()
        self.assertEqual(config["state_engine"], {
            "detailed_log": False,
            "map_concurrency": 1,
            "validate_definition": True,
            "environment": {},
        })
        self.assertEqual(config["metrics"], {"implementation": "None", "namespace": ""})

    def test_environment_overrides(self):
        os.environ["STATE_ENGINE_DETAILED_LOG"] = "true"
        os.environ["STATE_ENGINE_MAP_CONCURRENCY"] = "4"
        os.environ["METRICS_IMPLEMENTATION"] = "Prometheus"
        config = load_config(config={"state_engine": {"map_concurrency": 2}})
        self.assertTrue(config["state_engine"]["detailed_log"])
        self.assertEqual(config["state_engine"]["map_concurrency"], 4)
        self.assertEqual(config["metrics"]["implementation"], "Prometheus")

    def test_configuration_file(self):
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as fp:
            json.dump({"state_engine": {"environment": {"STAGE": "local"}}}, fp)
        try:
            config = load_config(fp.name)
        finally:
            os.remove(fp.name)
        self.assertEqual(config["state_engine"]["environment"], {"STAGE": "local"})

    def test_missing_configuration_file(self):
        with self.assertRaises(IOError):
            load_config("/nonexistent/asl_offline_engine.json")

    def test_metrics_disabled_by_default(self):
        self.assertIsNone(create_metrics(None))
        self.assertIsNone(create_metrics({"implementation": "None"}))
        self.assertIsInstance(create_metrics({"implementation": "Prometheus"}), Metrics)

    def test_execution_metrics(self):
        calls = []

        def hello(event, context):
            calls.append(event)
            if event.get("fail"):
                context.fail("Failed on request")
            else:
                context.succeed({"hello": event["name"]})

        engine = WorkflowEngine(
            handlers={"Hello": hello},
            config={"metrics": {"implementation": "Prometheus"}}
        )
        execution = engine.run(json.loads(ASL), {"name": "world"})
        self.assertEqual(execution["output"], {"hello": "world"})
        with self.assertRaises(HandlerRuntimeError):
            engine.run(json.loads(ASL), {"fail": True})

        metrics = engine.state_engine.metrics
        state_machine = {"StateMachine": "StateMachine"}
        function = {"Function": "Hello"}
        self.assertEqual(metrics.executions_started.get(state_machine), 2)
        self.assertEqual(metrics.executions_succeeded.get(state_machine), 1)
        self.assertEqual(metrics.executions_aborted.get(state_machine), 1)
        self.assertEqual(metrics.lambda_functions_scheduled.get(function), 2)
        self.assertEqual(metrics.lambda_functions_succeeded.get(function), 1)
        self.assertEqual(metrics.lambda_functions_failed.get(function), 1)
        self.assertEqual(len(calls), 2)


if __name__ == '__main__':
    unittest.main()
