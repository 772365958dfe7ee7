"""
Translate the X-Ray trace header into an OpenTelemetry span context.

The Lambda host passes the trace identity of the segment that triggered the
invocation in the ``_X_AMZN_TRACE_ID`` environment variable, for example:

    Root=1-65dc5008-1561ed7046ffcbcb114af027;Parent=b510129166d5a083;Sampled=1

The X-Ray root is ``1-<8 hex epoch seconds>-<24 hex random>``. Concatenating
the two hex groups gives the 128-bit OpenTelemetry trace id bit for bit, so
spans exported over OTLP land in the same trace as the X-Ray segments.
"""
# Standard library imports
import os
import re
from typing import Mapping, Optional

# Related third party imports
from opentelemetry.trace import (
    SpanContext,
    TraceFlags,
    TraceState,
    format_span_id,
    format_trace_id,
)

# Local application/library specific imports
from errors import (
    InvalidSampling,
    InvalidSpanId,
    InvalidTraceId,
    MissingField,
    MissingTraceHeader,
)

TRACE_HEADER_ENV_VAR = "_X_AMZN_TRACE_ID"

ROOT_KEY = "Root"
PARENT_KEY = "Parent"
SAMPLED_KEY = "Sampled"

XRAY_VERSION = "1"
_ROOT_PATTERN = re.compile(r"^1-([0-9a-fA-F]{8})-([0-9a-fA-F]{24})$")
_SPAN_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{16}$")
_SAMPLED_FLAGS = {
    "1": TraceFlags(TraceFlags.SAMPLED),
    "0": TraceFlags(TraceFlags.DEFAULT),
}


def _split_fields(header: str) -> dict:
    fields = {}
    for pair in header.split(";"):
        key, separator, value = pair.strip().partition("=")
        if not separator:
            continue
        # First occurrence wins, later duplicates are ignored like any
        # other unknown field.
        fields.setdefault(key.strip(), value.strip())
    return fields


def _required(fields: dict, key: str) -> str:
    if key not in fields:
        raise MissingField(key)
    return fields[key]


def _parse_trace_id(root: str) -> int:
    match = _ROOT_PATTERN.match(root)
    if not match:
        raise InvalidTraceId(f"Malformed X-Ray root {root!r}")
    trace_id = int(match.group(1) + match.group(2), 16)
    if trace_id == 0:
        raise InvalidTraceId("X-Ray root encodes an all-zero trace id")
    return trace_id


def _parse_span_id(parent: str) -> int:
    if not _SPAN_ID_PATTERN.match(parent):
        raise InvalidSpanId(f"Malformed X-Ray parent id {parent!r}")
    span_id = int(parent, 16)
    if span_id == 0:
        raise InvalidSpanId("X-Ray parent id is all zeroes")
    return span_id


def _parse_trace_flags(sampled: str) -> TraceFlags:
    try:
        return _SAMPLED_FLAGS[sampled]
    except KeyError:
        raise InvalidSampling(f"Unsupported Sampled value {sampled!r}") from None


def decode_trace_header(header: str) -> SpanContext:
    """
    Decode an X-Ray trace header into a remote OpenTelemetry SpanContext.

    Fields other than Root, Parent and Sampled (Lineage, Self, ...) are
    ignored. Raises a ParseError subclass naming the offending field.
    """
    fields = _split_fields(header)

    trace_id = _parse_trace_id(_required(fields, ROOT_KEY))
    span_id = _parse_span_id(_required(fields, PARENT_KEY))
    if SAMPLED_KEY not in fields:
        raise InvalidSampling("Trace header has no Sampled field")
    trace_flags = _parse_trace_flags(fields[SAMPLED_KEY])

    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        is_remote=True,
        trace_flags=trace_flags,
        trace_state=TraceState(),
    )


def encode_trace_header(span_context: SpanContext) -> str:
    """Render a span context in the X-Ray header format."""
    trace_id = format_trace_id(span_context.trace_id)
    root = f"{XRAY_VERSION}-{trace_id[:8]}-{trace_id[8:]}"
    sampled = "1" if span_context.trace_flags.sampled else "0"
    return (
        f"{ROOT_KEY}={root};"
        f"{PARENT_KEY}={format_span_id(span_context.span_id)};"
        f"{SAMPLED_KEY}={sampled}"
    )


def span_context_from_environment(
    environ: Optional[Mapping[str, str]] = None
) -> SpanContext:
    if environ is None:
        environ = os.environ
    header = environ.get(TRACE_HEADER_ENV_VAR)
    if not header:
        raise MissingTraceHeader(f"{TRACE_HEADER_ENV_VAR} is not set")
    return decode_trace_header(header)
