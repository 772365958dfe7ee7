import json
from os.path import dirname, join
from types import SimpleNamespace

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)

import lambda_cache
from otel_helper import SpanManager, TelemetryConfig, TelemetryPipeline

TRACE_HEADER = (
    "Root=1-65dc5008-1561ed7046ffcbcb114af027;"
    "Parent=b510129166d5a083;Sampled=1;Lineage=f98dd9ff:0"
)
TRACE_ID_HEX = "65dc50081561ed7046ffcbcb114af027"
PARENT_SPAN_ID_HEX = "b510129166d5a083"


class ExporterFactory:
    """Hands a fresh in-memory exporter to every tracer provider start."""

    def __init__(self):
        self.exporters = []

    def __call__(self):
        exporter = InMemorySpanExporter()
        self.exporters.append(exporter)
        return [exporter]

    @property
    def finished_spans(self):
        return [
            span
            for exporter in self.exporters
            for span in exporter.get_finished_spans()
        ]


class StubDetector:
    def __init__(self, labels=None, error=None):
        self.labels = labels or []
        self.error = error
        self.calls = []

    def detect(self, bucket, key):
        self.calls.append((bucket, key))
        if self.error is not None:
            raise self.error
        return list(self.labels)


@pytest.fixture(autouse=True)
def aws_environment(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    lambda_cache.reset()
    yield
    lambda_cache.reset()


@pytest.fixture
def exporter_factory():
    return ExporterFactory()


@pytest.fixture
def pipeline(exporter_factory):
    pipeline = TelemetryPipeline(TelemetryConfig(), exporter_factory=exporter_factory)
    yield pipeline
    pipeline.flush_and_shutdown()


@pytest.fixture
def span_manager(pipeline):
    return SpanManager(pipeline)


@pytest.fixture
def s3_event():
    with open(join(dirname(__file__), "events", "s3.json")) as f:
        return json.load(f)


@pytest.fixture
def eventbridge_event():
    with open(join(dirname(__file__), "events", "eventbridge.json")) as f:
        return json.load(f)


@pytest.fixture
def lambda_context():
    return SimpleNamespace(
        aws_request_id="C9A31149-3076-4B71-A289-36CCEA8C81E2",
        memory_limit_in_mb="512",
        function_name="LambdaTraceStack-DetectLabelsFunction",
        function_version="$LATEST",
    )
