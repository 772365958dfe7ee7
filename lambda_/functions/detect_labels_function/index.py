# Standard library imports
import logging
import os

# Local application/library specific imports
import lambda_cache
from errors import InvocationError, LabelDetectionError
from label_detection import LabelDetectionInvocation
from log_config import configure_logging
from otel_helper import (
    SpanManager,
    TelemetryConfig,
    TelemetryPipeline,
    lambda_context_attributes,
)
from rekognition_client import RekognitionLabelDetector

configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

MAX_LABELS = os.environ.get("REKOGNITION_MAX_LABELS")
MIN_CONFIDENCE = os.environ.get("REKOGNITION_MIN_CONFIDENCE")

telemetry = TelemetryPipeline(TelemetryConfig.from_env())
span_manager = SpanManager(telemetry)
label_detector = RekognitionLabelDetector(
    max_labels=int(MAX_LABELS) if MAX_LABELS else None,
    min_confidence=float(MIN_CONFIDENCE) if MIN_CONFIDENCE else None,
)


def event_handler(event, context):
    lambda_cache.initialize_invocation(context)
    invocation = LabelDetectionInvocation(
        span_manager=span_manager,
        detector=label_detector,
        attributes=lambda_context_attributes(
            context, cold_start=lambda_cache.is_cold_start()
        ),
    )
    # Details stay in the logs and the exported span, the host only learns
    # the kind of failure.
    try:
        return invocation.run(event, os.environ)
    except LabelDetectionError as exc:
        logger.exception("Label detection failed with %s", invocation.failure_kind)
        raise InvocationError(type(exc).__name__) from None
    except Exception as exc:
        logger.exception(
            "Unexpected %s during label detection", invocation.failure_kind
        )
        raise InvocationError(type(exc).__name__) from None
