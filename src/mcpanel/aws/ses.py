import boto3


def send_email(region: str, sender: str, recipient: str, subject: str, body: str) -> str:
    ses = boto3.client("ses", region_name=region)
    response = ses.send_email(
        Source=sender,
        Destination={"ToAddresses": [recipient]},
        Message={
            "Subject": {"Data": subject},
            "Body": {"Text": {"Data": body}},
        },
    )
    return response["MessageId"]
