"""Exceptions raised while detecting labels for an uploaded object."""


class LabelDetectionError(Exception):
    """Base class for every error this function raises on purpose."""


class ParseError(LabelDetectionError):
    """The trace header or the triggering event could not be understood."""


class MissingTraceHeader(ParseError):
    pass


class MissingField(ParseError):
    def __init__(self, field: str) -> None:
        super().__init__(f"Trace header has no {field} field")
        self.field = field


class InvalidTraceId(ParseError):
    pass


class InvalidSpanId(ParseError):
    pass


class InvalidSampling(ParseError):
    pass


class InvalidEvent(ParseError):
    pass


class DetectionError(LabelDetectionError):
    """Rekognition could not be reached or rejected the request."""


class ExportError(LabelDetectionError):
    """Spans could not be delivered to the collector.

    Only ever logged, never raised out of an invocation.
    """


class SpanClosedError(LabelDetectionError):
    """A span was mutated after it had been closed."""


class InvocationError(Exception):
    """Generic failure reported back to the Lambda host."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Label detection failed ({kind})")
        self.kind = kind
