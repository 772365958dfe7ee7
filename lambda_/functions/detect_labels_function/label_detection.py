# Standard library imports
import enum
import json
import logging
from typing import List, Mapping, Optional

# Related third party imports
from opentelemetry.trace import SpanContext, format_span_id, format_trace_id

# Local application/library specific imports
from otel_helper import SpanManager
from rekognition_client import LabelDetector
from s3_event import DetectLabelArguments, retrieve_arguments_from_event
from xray_context import encode_trace_header, span_context_from_environment

logger = logging.getLogger(__name__)

SPAN_NAME = "detect-label"


class InvocationState(enum.Enum):
    START = "start"
    CONTEXT_DECODED = "context_decoded"
    SPAN_OPENED = "span_opened"
    DETECTION_CALLED = "detection_called"
    SPAN_CLOSED = "span_closed"
    FLUSHED = "flushed"
    RESPONDED = "responded"
    FAILED = "failed"


class LabelDetectionInvocation:
    """
    One label detection run, traced as a child of the X-Ray segment that
    triggered it.

    Header and event problems fail before any span exists. Once the span is
    open it is always closed and flushed, also when Rekognition fails.
    """

    def __init__(
        self,
        span_manager: SpanManager,
        detector: LabelDetector,
        attributes: Optional[dict] = None,
    ) -> None:
        self._span_manager = span_manager
        self._detector = detector
        self._attributes = attributes or {}
        self.state = InvocationState.START
        self.failure_kind: Optional[str] = None
        self.history = [self.state]

    def _transition(self, state: InvocationState) -> None:
        logger.debug("Invocation %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def run(
        self, lambda_event: dict, environ: Optional[Mapping[str, str]] = None
    ) -> dict:
        """Run the invocation, reading the X-Ray header from ``environ`` once."""
        try:
            labels = self._run(lambda_event, environ)
        except Exception as exc:
            self.failure_kind = type(exc).__name__
            self._transition(InvocationState.FAILED)
            raise

        logger.info("Labels is %s", labels)
        self._transition(InvocationState.RESPONDED)
        return {"message": f"Labels is {json.dumps(labels)}!"}

    def _run(
        self, lambda_event: dict, environ: Optional[Mapping[str, str]]
    ) -> List[str]:
        parent = span_context_from_environment(environ)
        logger.debug(
            "Parent context is trace %s, span %s",
            format_trace_id(parent.trace_id),
            format_span_id(parent.span_id),
        )
        self._transition(InvocationState.CONTEXT_DECODED)

        arguments = retrieve_arguments_from_event(lambda_event)
        try:
            return self._detect_labels(arguments, parent)
        finally:
            self._transition(InvocationState.SPAN_CLOSED)
            self._span_manager.flush_and_shutdown()
            self._transition(InvocationState.FLUSHED)

    def _detect_labels(
        self, arguments: DetectLabelArguments, parent: SpanContext
    ) -> List[str]:
        record_attributes = {
            "app.source_image.s3_bucket": arguments.bucket,
            "app.source_image.s3_object_key": arguments.name,
        }
        with self._span_manager.span(
            SPAN_NAME,
            parent=parent,
            attributes=self._attributes | record_attributes,
        ) as handle:
            self._transition(InvocationState.SPAN_OPENED)
            logger.info(
                "Trace ID(in detect_labels) is %s",
                format_trace_id(self._span_manager.current_trace_id()),
            )
            logger.debug(
                "Downstream trace header is %s",
                encode_trace_header(handle.span_context),
            )

            labels = self._detector.detect(arguments.bucket, arguments.name)
            self._transition(InvocationState.DETECTION_CALLED)
            self._span_manager.set_attribute(handle, "label_num", len(labels))
            return labels
