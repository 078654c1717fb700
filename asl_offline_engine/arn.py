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
AWS resources are identified by Amazon Resource Names (ARNs) specified here:
http://docs.aws.amazon.com/general/latest/gr/aws-arns-and-namespaces.html
Task states name their handler with a Resource ARN and executions are given
an ARN of their own, so these small helpers create and pick apart ARNs.
"""

import sys
assert sys.version_info >= (3, 0)  # Bomb out if not running Python3


def create_arn(
    resource="",
    partition="aws",
    service="",
    region="local",
    account="0123456789",
    resource_type=None,
):
    if resource_type:
        resource = resource_type + ":" + resource
    return "arn:{}:{}:{}:{}:{}".format(partition, service, region, account, resource)

def parse_arn(arn):
    """
    Parse an ARN into a dictionary of its component parts. Returns None if
    the string isn't an ARN, Resource fields are frequently plain names.
    """
    if not isinstance(arn, str) or not arn.startswith("arn:"):
        return None
    elements = arn.split(":", 5)
    if len(elements) != 6:
        return None
    result = {
        "partition": elements[1],
        "service": elements[2],
        "region": elements[3],
        "account": elements[4],
        "resource": elements[5],
        "resource_type": None,
    }
    if "/" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split("/", 1)
    elif ":" in result["resource"]:
        result["resource_type"], result["resource"] = result["resource"].split(":", 1)
    return result

def resource_function_name(resource):
    """
    arn:aws:lambda:region:account:function:my-function[:alias] -> my-function
    Non-ARN resources are returned as they are.
    """
    arn = parse_arn(resource)
    if arn is None:
        return resource
    return arn["resource"].split(":")[0]
