# Standard library imports
import json
import logging
from datetime import datetime, timezone

# Related third party imports
from opentelemetry import trace
from opentelemetry.trace import format_span_id, format_trace_id


class JsonFormatter(logging.Formatter):
    """
    Render each record as one JSON document per line.

    Records logged while a span is active carry its trace_id and span_id, so
    CloudWatch lines can be joined with the exported spans.
    """

    def format(self, record: logging.LogRecord) -> str:
        document = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Set by the Lambda runtime's log filter.
        request_id = getattr(record, "aws_request_id", None)
        if request_id:
            document["aws_request_id"] = request_id

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            document["trace_id"] = format_trace_id(span_context.trace_id)
            document["span_id"] = format_span_id(span_context.span_id)

        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    for handler in root.handlers:
        handler.setFormatter(JsonFormatter())
