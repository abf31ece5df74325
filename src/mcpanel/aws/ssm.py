import boto3
from botocore.exceptions import ClientError


RUN_SHELL_DOCUMENT = "AWS-RunShellScript"


def _is_not_found(exc: ClientError) -> bool:
    return exc.response["Error"]["Code"] == "ParameterNotFound"


def get_parameter(region: str, name: str) -> dict | None:
    """Return the SSM Parameter dict, or None if it does not exist."""
    ssm = boto3.client("ssm", region_name=region)
    try:
        response = ssm.get_parameter(Name=name)
    except ClientError as e:
        if _is_not_found(e):
            return None
        raise
    return response["Parameter"]


def put_parameter(
    region: str, name: str, value: str, overwrite: bool = True, param_type: str = "String",
) -> None:
    """Write a parameter. With ``overwrite=False`` SSM rejects the call if the name exists."""
    ssm = boto3.client("ssm", region_name=region)
    ssm.put_parameter(Name=name, Value=value, Type=param_type, Overwrite=overwrite)


def delete_parameter(region: str, name: str) -> None:
    """Delete a parameter. No-op if it does not exist."""
    ssm = boto3.client("ssm", region_name=region)
    try:
        ssm.delete_parameter(Name=name)
    except ClientError as e:
        if not _is_not_found(e):
            raise


def send_command(region: str, instance_id: str, commands: list[str]) -> str:
    ssm = boto3.client("ssm", region_name=region)
    response = ssm.send_command(
        InstanceIds=[instance_id],
        DocumentName=RUN_SHELL_DOCUMENT,
        Parameters={"commands": commands},
    )
    command_id = response.get("Command", {}).get("CommandId")
    if not command_id:
        raise RuntimeError("SSM send_command returned no command ID")
    return command_id


def get_command_invocation(region: str, command_id: str, instance_id: str) -> dict:
    ssm = boto3.client("ssm", region_name=region)
    return ssm.get_command_invocation(CommandId=command_id, InstanceId=instance_id)
