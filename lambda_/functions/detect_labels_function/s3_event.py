# Standard library imports
from dataclasses import dataclass
from urllib.parse import unquote_plus

# Local application/library specific imports
from errors import InvalidEvent


@dataclass(frozen=True)
class DetectLabelArguments:
    bucket: str
    name: str


def _section(parent: dict, key: str) -> dict:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidEvent(f"{key!r} is a {type(value).__name__}, not an object")
    return value


def _bucket_and_key(container: dict) -> tuple:
    bucket = _section(container, "bucket").get("name")
    key = _section(container, "object").get("key")
    if not bucket or not isinstance(bucket, str):
        raise InvalidEvent("No bucket name")
    if not key or not isinstance(key, str):
        raise InvalidEvent("No object name")
    return bucket, key


def _from_notification(lambda_event: dict) -> DetectLabelArguments:
    records = lambda_event["Records"]
    if not isinstance(records, list):
        raise InvalidEvent(f"Records is a {type(records).__name__}, not a list")
    if not records:
        raise InvalidEvent("Event has no records")
    if not isinstance(records[0], dict):
        raise InvalidEvent("First record is not an object")
    bucket, key = _bucket_and_key(_section(records[0], "s3"))
    # Notification keys are URL encoded, spaces arrive as '+'.
    return DetectLabelArguments(bucket=bucket, name=unquote_plus(key))


def _from_eventbridge(lambda_event: dict) -> DetectLabelArguments:
    bucket, key = _bucket_and_key(_section(lambda_event, "detail"))
    return DetectLabelArguments(bucket=bucket, name=key)


def retrieve_arguments_from_event(lambda_event) -> DetectLabelArguments:
    """
    Extract the bucket and object key from an S3 object-created event.

    Both the S3 notification shape (``Records[0].s3``) and the EventBridge
    "Object Created" shape (``detail.bucket`` / ``detail.object``) are
    accepted. Only the first notification record is used. Anything else
    raises InvalidEvent.
    """
    if not isinstance(lambda_event, dict):
        raise InvalidEvent(f"Unexpected event type {type(lambda_event).__name__}")
    if "Records" in lambda_event:
        return _from_notification(lambda_event)
    if "detail" in lambda_event:
        return _from_eventbridge(lambda_event)
    raise InvalidEvent("Event is neither an S3 notification nor an EventBridge event")
