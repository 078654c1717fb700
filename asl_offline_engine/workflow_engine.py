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
This is the main application entry point for embedding the interpreter. It
reads an optional JSON configuration file, applies defaults and environment
variable overrides, then creates the StateEngine that runs executions.

Locating the state machine definition and the task handlers (e.g. from a
serverless manifest) is the caller's job, WorkflowEngine just receives them
already parsed.
"""

import sys
assert sys.version_info >= (3, 6)  # Bomb out if not running Python3.6


import json, os
from asl_offline_engine.logger import init_logging
from asl_offline_engine.state_engine import StateEngine


def as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def load_config(configuration_file=None, config=None):
    """
    Return a complete configuration dict.

    :param configuration_file: Optional path to a JSON configuration file
    :type configuration_file: str
    :param config: Optional configuration dict, used instead of the file
    :type config: dict
    :raises IOError: If configuration file does not exist, or is not readable
    :raises ValueError: If configuration file does not contain valid JSON
    """
    logger = init_logging(log_name="asl_offline_engine")

    if config is None and configuration_file:
        try:
            with open(configuration_file, "r") as fp:
                config = json.load(fp)
        except IOError:
            logger.error(
                "Unable to read configuration file: {}".format(configuration_file)
            )
            raise
        except ValueError:
            logger.error("Configuration file does not contain valid JSON")
            raise

    config = dict(config or {})

    # Provide defaults for any unset config key
    config["state_engine"] = dict(config.get("state_engine", {}))
    config["metrics"] = dict(config.get("metrics", {}))

    """
    Override config values if a field is set as an environment variable.
    There is also a USE_STRUCTURED_LOGGING environment variable used by
    the logger to select between automation friendly structured logging
    or more human readable "traditional" logs.
    """
    se = config["state_engine"]
    se["detailed_log"] = as_bool(os.environ.get(
        "STATE_ENGINE_DETAILED_LOG", se.get("detailed_log", False)
    ))
    se["map_concurrency"] = int(os.environ.get(
        "STATE_ENGINE_MAP_CONCURRENCY", se.get("map_concurrency", 1)
    ))
    se["validate_definition"] = as_bool(os.environ.get(
        "STATE_ENGINE_VALIDATE_DEFINITION", se.get("validate_definition", True)
    ))
    se["environment"] = dict(se.get("environment", {}))

    mt = config["metrics"]
    mt["implementation"] = os.environ.get(
        "METRICS_IMPLEMENTATION", mt.get("implementation", "None")
    )
    mt["namespace"] = os.environ.get("METRICS_NAMESPACE", mt.get("namespace", ""))

    return config


class WorkflowEngine(object):
    def __init__(self, configuration_file=None, handlers=None, config=None, log=None):
        """
        :param configuration_file: Path to the engine configuration file
        :type configuration_file: str
        :param handlers: Map of task identifier to handler
        :type handlers: dict
        :param config: Configuration dict, takes precedence over the file
        :type config: dict
        :param log: The log(line) sink for execution progress lines
        :type log: callable
        """
        # Initialise logger
        self.logger = init_logging(log_name="asl_offline_engine")
        self.config = load_config(configuration_file, config)
        self.logger.info("Creating WorkflowEngine")
        self.state_engine = StateEngine(self.config, handlers, log)

    async def execute(self, definition, event=None, name=None, state_machine_name="StateMachine"):
        return await self.state_engine.execute(definition, event, name, state_machine_name)

    def run(self, definition, event=None, name=None, state_machine_name="StateMachine"):
        return self.state_engine.run(definition, event, name, state_machine_name)
