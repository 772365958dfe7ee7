# Standard library imports
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional

# Related third party imports
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.trace import NonRecordingSpan, SpanContext, Status, StatusCode

# Local application/library specific imports
from errors import ExportError, SpanClosedError

logger = logging.getLogger(__name__)

TRACER_NAME = "lambda-tracer"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TelemetryConfig:
    service_name: str = "lambda"
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT
    export_timeout_seconds: int = 3
    max_queue_size: int = 2048
    max_export_batch_size: int = 512
    schedule_delay_millis: int = 5000
    flush_timeout_millis: int = 30000
    console_export: bool = False
    api_key_secret: Optional[str] = None
    api_key_header: str = "x-honeycomb-team"

    @classmethod
    def from_env(cls) -> "TelemetryConfig":
        env = os.environ
        return cls(
            service_name=env.get("OTEL_SERVICE_NAME", cls.service_name),
            otlp_endpoint=env.get(
                "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", cls.otlp_endpoint
            ),
            export_timeout_seconds=int(
                env.get("OTEL_EXPORTER_OTLP_TIMEOUT", cls.export_timeout_seconds)
            ),
            max_queue_size=int(env.get("OTEL_BSP_MAX_QUEUE_SIZE", cls.max_queue_size)),
            max_export_batch_size=int(
                env.get("OTEL_BSP_MAX_EXPORT_BATCH_SIZE", cls.max_export_batch_size)
            ),
            schedule_delay_millis=int(
                env.get("OTEL_BSP_SCHEDULE_DELAY", cls.schedule_delay_millis)
            ),
            flush_timeout_millis=int(
                env.get("TELEMETRY_FLUSH_TIMEOUT_MILLIS", cls.flush_timeout_millis)
            ),
            console_export=_env_flag("TELEMETRY_CONSOLE_EXPORT"),
            api_key_secret=env.get("TELEMETRY_API_KEY_SECRET") or None,
            api_key_header=env.get("TELEMETRY_API_KEY_HEADER", cls.api_key_header),
        )


class TelemetryPipeline:
    """
    Process-wide span export pipeline.

    The tracer provider is built lazily on the first span and torn down by
    flush_and_shutdown() before the invocation returns, since Lambda may
    freeze or recycle the execution environment at any time afterwards.
    A warm invocation builds a fresh provider on its first span.
    """

    def __init__(
        self,
        config: TelemetryConfig,
        exporter_factory: Optional[Callable[[], List[SpanExporter]]] = None,
    ) -> None:
        self._config = config
        self._exporter_factory = exporter_factory or self._default_exporters
        self._lock = threading.Lock()
        self._provider: Optional[TracerProvider] = None
        self._open_spans = 0
        self._flushing = 0
        self._api_key: Optional[str] = None

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._provider is not None

    def _otlp_headers(self) -> dict:
        if not self._config.api_key_secret:
            return {}
        if self._api_key is None:
            try:
                secretsmanager_client = boto3.client("secretsmanager")
                self._api_key = secretsmanager_client.get_secret_value(
                    SecretId=self._config.api_key_secret
                )["SecretString"]
            except (BotoCoreError, ClientError, KeyError) as exc:
                # Retried on the next provider start.
                _report_export_failure(
                    ExportError(
                        f"Could not read {self._config.api_key_secret}, "
                        f"exporting without API key: {exc}"
                    )
                )
                return {}
        return {self._config.api_key_header: self._api_key}

    def _default_exporters(self) -> List[SpanExporter]:
        exporters: List[SpanExporter] = [
            OTLPSpanExporter(
                endpoint=self._config.otlp_endpoint,
                headers=self._otlp_headers(),
                timeout=self._config.export_timeout_seconds,
            )
        ]
        if self._config.console_export:
            # One JSON document per line, so CloudWatch Logs keeps spans intact.
            exporters.append(
                ConsoleSpanExporter(
                    formatter=lambda span: span.to_json(indent=None) + os.linesep
                )
            )
        return exporters

    def _start(self) -> TracerProvider:
        provider = TracerProvider(
            resource=Resource.create(
                {"service.name": self._config.service_name, "cloud.provider": "aws"}
            )
        )
        try:
            exporters = self._exporter_factory()
        except Exception as exc:
            # Spans are still created, they just go nowhere.
            _report_export_failure(ExportError(f"Exporter setup failed: {exc}"))
            exporters = []
        for exporter in exporters:
            provider.add_span_processor(
                BatchSpanProcessor(
                    exporter,
                    max_queue_size=self._config.max_queue_size,
                    max_export_batch_size=self._config.max_export_batch_size,
                    schedule_delay_millis=self._config.schedule_delay_millis,
                    export_timeout_millis=self._config.export_timeout_seconds * 1000,
                )
            )
        logger.debug("Started tracer provider for %s", self._config.service_name)
        return provider

    def acquire_tracer(self) -> trace.Tracer:
        """Return a tracer and count one more open span against the pipeline."""
        with self._lock:
            if self._provider is None:
                self._provider = self._start()
            self._open_spans += 1
            return self._provider.get_tracer(TRACER_NAME)

    def release(self) -> None:
        with self._lock:
            self._open_spans -= 1

    def flush_and_shutdown(self) -> bool:
        """
        Export every buffered span and release the exporters.

        The flush runs outside the lock so other invocations can keep opening
        and closing spans meanwhile. Shutdown is skipped while spans are open
        or another flush is still running; the last caller performs it.
        Export failures are logged and reported through the return value,
        never raised.
        """
        with self._lock:
            provider = self._provider
            if provider is None:
                return True
            self._flushing += 1

        flushed = self._flush(provider)

        with self._lock:
            self._flushing -= 1
            if self._provider is not provider or self._open_spans or self._flushing:
                logger.debug(
                    "Deferring tracer shutdown, %d spans open, %d flushes running",
                    self._open_spans,
                    self._flushing,
                )
                return flushed
            self._provider = None

        try:
            provider.shutdown()
        except Exception as exc:
            _report_export_failure(ExportError(f"Shutdown failed: {exc}"))
            return False
        return flushed

    def _flush(self, provider: TracerProvider) -> bool:
        timeout_millis = self._config.flush_timeout_millis
        try:
            flushed = provider.force_flush(timeout_millis=timeout_millis)
        except Exception as exc:
            _report_export_failure(ExportError(f"Flush failed: {exc}"))
            return False
        if not flushed:
            _report_export_failure(
                ExportError(f"Flush did not finish within {timeout_millis} ms")
            )
        return flushed


def _report_export_failure(error: ExportError) -> None:
    logger.warning("Span export failed: %s", error)


def lambda_context_attributes(context: Any, cold_start: bool) -> dict:
    attributes = {"faas.coldstart": cold_start}
    if context is None:
        return attributes
    return attributes | {
        "faas.execution": context.aws_request_id.lower(),
        "faas.memory_limit_in_mb": int(context.memory_limit_in_mb),
        "faas.name": context.function_name,
        "faas.version": context.function_version,
    }


class SpanHandle:
    """An open (or closed) span owned by a SpanManager."""

    def __init__(self, span: trace.Span, name: str) -> None:
        self._span = span
        self._lock = threading.Lock()
        self.name = name
        self.closed = False

    @property
    def span_context(self) -> SpanContext:
        return self._span.get_span_context()


class SpanManager:
    """
    Open, annotate and close spans on a TelemetryPipeline.

    Setting an attribute on a closed span raises SpanClosedError. Closing a
    span twice is a no-op that logs a warning.
    """

    def __init__(self, pipeline: TelemetryPipeline) -> None:
        self._pipeline = pipeline

    def open_span(
        self,
        name: str,
        parent: Optional[SpanContext] = None,
        attributes: Optional[dict] = None,
    ) -> SpanHandle:
        # Without an explicit parent the tracer falls back to the active
        # OpenTelemetry context, which yields a root span when nothing is set.
        context = None
        if parent is not None:
            context = trace.set_span_in_context(NonRecordingSpan(parent))
        tracer = self._pipeline.acquire_tracer()
        try:
            span = tracer.start_span(name=name, context=context, attributes=attributes)
        except Exception:
            self._pipeline.release()
            raise
        return SpanHandle(span, name)

    def set_attribute(self, handle: SpanHandle, key: str, value: Any) -> None:
        with handle._lock:
            if handle.closed:
                raise SpanClosedError(
                    f"Cannot set {key!r} on closed span {handle.name!r}"
                )
            handle._span.set_attribute(key, value)

    def record_error(self, handle: SpanHandle, exc: BaseException) -> None:
        with handle._lock:
            if handle.closed:
                raise SpanClosedError(
                    f"Cannot record an error on closed span {handle.name!r}"
                )
            handle._span.record_exception(exc)
            handle._span.set_attribute("error", True)
            handle._span.set_attribute("error.type", type(exc).__name__)
            handle._span.set_status(Status(StatusCode.ERROR, str(exc)))

    def close(self, handle: SpanHandle) -> None:
        with handle._lock:
            if handle.closed:
                logger.warning("Span %r was already closed", handle.name)
                return
            handle.closed = True
            handle._span.end()
        self._pipeline.release()

    @contextmanager
    def span(
        self,
        name: str,
        parent: Optional[SpanContext] = None,
        attributes: Optional[dict] = None,
    ) -> Iterator[SpanHandle]:
        """
        Open a span for the duration of the block and make it the active span.

        An exception escaping the block is recorded on the span, which is
        closed either way.
        """
        handle = self.open_span(name, parent=parent, attributes=attributes)
        try:
            with trace.use_span(
                handle._span,
                end_on_exit=False,
                record_exception=False,
                set_status_on_exception=False,
            ):
                yield handle
        except Exception as exc:
            if not handle.closed:
                self.record_error(handle, exc)
            raise
        finally:
            self.close(handle)

    def flush_and_shutdown(self) -> bool:
        return self._pipeline.flush_and_shutdown()

    @staticmethod
    def current_trace_id() -> int:
        return trace.get_current_span().get_span_context().trace_id
