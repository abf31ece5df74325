import json

import boto3
from moto import mock_aws
import pytest

from mcpanel.aws.cloudformation import describe_stack, stack_outputs

pytestmark = pytest.mark.uses_moto

REGION = "us-east-1"

TEMPLATE = {
    "Resources": {
        "Topic": {"Type": "AWS::SNS::Topic"},
    },
    "Outputs": {
        "TopicArn": {"Value": {"Ref": "Topic"}},
    },
}


@mock_aws
def test_missing_stack_is_none():
    assert describe_stack(REGION, "MinecraftStack") is None


@mock_aws
def test_describe_existing_stack():
    cfn = boto3.client("cloudformation", region_name=REGION)
    cfn.create_stack(StackName="MinecraftStack", TemplateBody=json.dumps(TEMPLATE))
    stack = describe_stack(REGION, "MinecraftStack")
    assert stack["StackName"] == "MinecraftStack"
    assert stack["StackStatus"] == "CREATE_COMPLETE"
    assert "TopicArn" in stack_outputs(stack)


def test_stack_outputs_without_outputs():
    assert stack_outputs({"StackName": "x"}) == {}
