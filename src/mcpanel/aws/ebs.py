import boto3


ROOT_DEVICE = "/dev/xvda"


def get_volume(region: str, volume_id: str) -> dict | None:
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_volumes(VolumeIds=[volume_id])
    volumes = response.get("Volumes", [])
    return volumes[0] if volumes else None


def attachment_state(volume: dict | None) -> str | None:
    """Return the first attachment's state, or None when the volume has no attachment."""
    if not volume:
        return None
    attachments = volume.get("Attachments", [])
    if not attachments:
        return None
    return attachments[0].get("State")


def detach_volume(region: str, volume_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.detach_volume(VolumeId=volume_id)


def delete_volume(region: str, volume_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.delete_volume(VolumeId=volume_id)


def create_volume(
    region: str, availability_zone: str, snapshot_id: str,
    size_gb: int = 8, tags: dict[str, str] | None = None,
) -> str:
    ec2 = boto3.client("ec2", region_name=region)
    kwargs = {
        "AvailabilityZone": availability_zone,
        "SnapshotId": snapshot_id,
        "VolumeType": "gp3",
        "Size": size_gb,
        "Encrypted": True,
    }
    if tags:
        kwargs["TagSpecifications"] = [{
            "ResourceType": "volume",
            "Tags": [{"Key": k, "Value": v} for k, v in tags.items()],
        }]
    response = ec2.create_volume(**kwargs)
    return response["VolumeId"]


def attach_volume(region: str, volume_id: str, instance_id: str, device: str = ROOT_DEVICE) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.attach_volume(VolumeId=volume_id, InstanceId=instance_id, Device=device)
