# Standard library imports
import logging
from typing import List, Optional, Protocol

# Related third party imports
import boto3
from botocore.exceptions import BotoCoreError, ClientError

# Local application/library specific imports
from errors import DetectionError

logger = logging.getLogger(__name__)


class LabelDetector(Protocol):
    def detect(self, bucket: str, key: str) -> List[str]:
        ...


class RekognitionLabelDetector:
    """Detect labels of an image stored in S3 with Amazon Rekognition."""

    def __init__(
        self,
        client=None,
        max_labels: Optional[int] = None,
        min_confidence: Optional[float] = None,
    ) -> None:
        self._client = client
        self._max_labels = max_labels
        self._min_confidence = min_confidence

    @property
    def client(self):
        # Created on first use so importing the handler stays cheap in tests.
        if self._client is None:
            self._client = boto3.client("rekognition")
        return self._client

    def detect(self, bucket: str, key: str) -> List[str]:
        request = {"Image": {"S3Object": {"Bucket": bucket, "Name": key}}}
        if self._max_labels is not None:
            request["MaxLabels"] = self._max_labels
        if self._min_confidence is not None:
            request["MinConfidence"] = self._min_confidence

        try:
            response = self.client.detect_labels(**request)
        except (BotoCoreError, ClientError) as exc:
            raise DetectionError(
                f"DetectLabels failed for s3://{bucket}/{key}: {exc}"
            ) from exc

        labels = [
            label["Name"] for label in response.get("Labels", []) if label.get("Name")
        ]
        logger.debug("Rekognition returned %d labels for %s", len(labels), key)
        return labels
