import boto3


BASELINE_IMAGE_PATTERN = "al2023-ami-2023*-arm64"


def get_latest_baseline_snapshot(region: str, name_pattern: str = BASELINE_IMAGE_PATTERN) -> str:
    """Return the root snapshot ID of the newest Amazon-owned image matching ``name_pattern``."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_images(
        Owners=["amazon"],
        Filters=[
            {"Name": "name", "Values": [name_pattern]},
            {"Name": "state", "Values": ["available"]},
        ],
    )
    images = response.get("Images", [])
    if not images:
        raise RuntimeError(f"No image matching {name_pattern} found in region {region}")
    images.sort(key=lambda x: x.get("CreationDate", ""), reverse=True)
    latest = images[0]
    for mapping in latest.get("BlockDeviceMappings", []):
        snapshot_id = mapping.get("Ebs", {}).get("SnapshotId")
        if snapshot_id:
            return snapshot_id
    raise RuntimeError(f"Image {latest['ImageId']} has no root snapshot")
