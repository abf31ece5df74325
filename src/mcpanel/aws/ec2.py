import boto3


LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped", "shutting-down"]


def find_instance_id(region: str, name_tags: list[str]) -> str | None:
    """Return the first non-terminated instance whose Name tag matches one of ``name_tags``."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_instances(
        Filters=[
            {"Name": "tag:Name", "Values": name_tags},
            {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
        ],
    )
    for reservation in response.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            if instance.get("InstanceId"):
                return instance["InstanceId"]
    return None


def describe_instance(region: str, instance_id: str) -> dict | None:
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_instances(InstanceIds=[instance_id])
    reservations = response.get("Reservations", [])
    if not reservations or not reservations[0].get("Instances"):
        return None
    return reservations[0]["Instances"][0]


def summarize_instance(instance: dict) -> dict:
    """Flatten the fields the panel cares about out of a DescribeInstances entry."""
    volume_ids = [
        m["Ebs"]["VolumeId"]
        for m in instance.get("BlockDeviceMappings", [])
        if m.get("Ebs", {}).get("VolumeId")
    ]
    return {
        "instance_id": instance["InstanceId"],
        "state": instance.get("State", {}).get("Name", "unknown"),
        "public_ip": instance.get("PublicIpAddress"),
        "availability_zone": instance.get("Placement", {}).get("AvailabilityZone", ""),
        "volume_ids": volume_ids,
    }


def start_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.start_instances(InstanceIds=[instance_id])


def stop_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.stop_instances(InstanceIds=[instance_id])
