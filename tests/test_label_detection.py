from concurrent.futures import ThreadPoolExecutor

import pytest
from opentelemetry.trace import StatusCode, format_span_id, format_trace_id

from conftest import PARENT_SPAN_ID_HEX, TRACE_HEADER, TRACE_ID_HEX, StubDetector
from errors import DetectionError, InvalidEvent, InvalidSpanId, MissingTraceHeader
from label_detection import InvocationState, LabelDetectionInvocation
from otel_helper import SpanManager
from xray_context import TRACE_HEADER_ENV_VAR

ENVIRON = {TRACE_HEADER_ENV_VAR: TRACE_HEADER}

HAPPY_PATH = [
    InvocationState.START,
    InvocationState.CONTEXT_DECODED,
    InvocationState.SPAN_OPENED,
    InvocationState.DETECTION_CALLED,
    InvocationState.SPAN_CLOSED,
    InvocationState.FLUSHED,
    InvocationState.RESPONDED,
]


def test_detect_labels(span_manager, exporter_factory, pipeline, s3_event):
    detector = StubDetector(labels=["landscape"])
    invocation = LabelDetectionInvocation(span_manager, detector)

    response = invocation.run(s3_event, ENVIRON)

    assert response == {"message": 'Labels is ["landscape"]!'}
    assert detector.calls == [("DOC-EXAMPLE-BUCKET", "b21b84d653bb07b05b1e6b33684dc11b")]
    assert invocation.history == HAPPY_PATH
    assert not pipeline.is_running

    (span,) = exporter_factory.finished_spans
    assert span.name == "detect-label"
    assert span.attributes["label_num"] == 1
    assert span.attributes["app.source_image.s3_bucket"] == "DOC-EXAMPLE-BUCKET"
    assert format_trace_id(span.context.trace_id) == TRACE_ID_HEX
    assert [format_span_id(span.parent.span_id)] == [PARENT_SPAN_ID_HEX]


def test_detect_no_labels(span_manager, exporter_factory, s3_event):
    invocation = LabelDetectionInvocation(span_manager, StubDetector(labels=[]))

    response = invocation.run(s3_event, ENVIRON)

    assert response == {"message": "Labels is []!"}
    (span,) = exporter_factory.finished_spans
    assert span.attributes["label_num"] == 0


def test_invocation_attributes_are_added_to_span(
    span_manager, exporter_factory, s3_event
):
    invocation = LabelDetectionInvocation(
        span_manager,
        StubDetector(labels=["landscape"]),
        attributes={"faas.coldstart": True},
    )
    invocation.run(s3_event, ENVIRON)

    (span,) = exporter_factory.finished_spans
    assert span.attributes["faas.coldstart"] is True
    assert span.attributes["label_num"] == 1


def test_detection_failure_still_closes_and_flushes_span(
    span_manager, exporter_factory, pipeline, s3_event
):
    error = DetectionError("Rekognition unavailable")
    invocation = LabelDetectionInvocation(span_manager, StubDetector(error=error))

    with pytest.raises(DetectionError):
        invocation.run(s3_event, ENVIRON)

    assert invocation.history == [
        InvocationState.START,
        InvocationState.CONTEXT_DECODED,
        InvocationState.SPAN_OPENED,
        InvocationState.SPAN_CLOSED,
        InvocationState.FLUSHED,
        InvocationState.FAILED,
    ]
    assert invocation.failure_kind == "DetectionError"
    assert not pipeline.is_running

    (span,) = exporter_factory.finished_spans
    assert span.status.status_code == StatusCode.ERROR
    assert span.attributes["error.type"] == "DetectionError"
    assert "label_num" not in span.attributes
    assert format_span_id(span.parent.span_id) == PARENT_SPAN_ID_HEX


@pytest.mark.parametrize(
    "environ, error",
    [
        ({}, MissingTraceHeader),
        ({TRACE_HEADER_ENV_VAR: ""}, MissingTraceHeader),
        (
            {
                TRACE_HEADER_ENV_VAR: (
                    "Root=1-65dc5008-1561ed7046ffcbcb114af027;Parent=xyz;Sampled=1"
                )
            },
            InvalidSpanId,
        ),
    ],
)
def test_header_failure_short_circuits_before_span(
    span_manager, exporter_factory, s3_event, environ, error
):
    detector = StubDetector(labels=["landscape"])
    invocation = LabelDetectionInvocation(span_manager, detector)

    with pytest.raises(error):
        invocation.run(s3_event, environ)

    assert invocation.history == [InvocationState.START, InvocationState.FAILED]
    assert detector.calls == []
    assert exporter_factory.exporters == []


def test_event_failure_short_circuits_before_span(span_manager, exporter_factory):
    invocation = LabelDetectionInvocation(span_manager, StubDetector())

    with pytest.raises(InvalidEvent):
        invocation.run({"Records": []}, ENVIRON)

    assert invocation.history == [
        InvocationState.START,
        InvocationState.CONTEXT_DECODED,
        InvocationState.FAILED,
    ]
    assert exporter_factory.exporters == []


def test_trace_id_inside_detection_call(span_manager, s3_event):
    seen = []

    class TraceIdDetector:
        def detect(self, bucket, key):
            seen.append(format_trace_id(SpanManager.current_trace_id()))
            return []

    LabelDetectionInvocation(span_manager, TraceIdDetector()).run(
        s3_event, ENVIRON
    )

    assert seen == [TRACE_ID_HEX]


def _header(index):
    return (
        f"Root=1-{index + 1:08x}-{index + 1:024x};"
        f"Parent={index + 0x1000:016x};Sampled=1"
    )


def test_concurrent_invocations_never_cross_link(
    span_manager, exporter_factory, pipeline, s3_event
):
    invocations = 32

    def run(index):
        invocation = LabelDetectionInvocation(
            span_manager, StubDetector(labels=["landscape"] * (index % 4))
        )
        return invocation.run(s3_event, {TRACE_HEADER_ENV_VAR: _header(index)})

    with ThreadPoolExecutor(max_workers=8) as executor:
        responses = list(executor.map(run, range(invocations)))

    assert len(responses) == invocations
    assert not pipeline.is_running

    spans = exporter_factory.finished_spans
    assert len(spans) == invocations
    expected_parent = {
        int(f"{index + 1:08x}{index + 1:024x}", 16): index + 0x1000
        for index in range(invocations)
    }
    for span in spans:
        assert span.parent.span_id == expected_parent[span.context.trace_id]
        assert span.parent.trace_id == span.context.trace_id
    assert len({span.context.span_id for span in spans}) == invocations
