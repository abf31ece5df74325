import boto3
from botocore.exceptions import ClientError


def describe_stack(region: str, stack_name: str) -> dict | None:
    """Return the stack description, or None when the stack does not exist."""
    cfn = boto3.client("cloudformation", region_name=region)
    try:
        response = cfn.describe_stacks(StackName=stack_name)
    except ClientError as e:
        error = e.response["Error"]
        if error["Code"] == "ValidationError" and "does not exist" in error.get("Message", ""):
            return None
        raise
    stacks = response.get("Stacks", [])
    return stacks[0] if stacks else None


def stack_outputs(stack: dict) -> dict[str, str]:
    return {o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])}
