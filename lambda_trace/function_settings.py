"""Settings of the label detection function, kept free of CDK imports."""

FUNCTION_ASSET = "lambda_/functions/detect_labels_function"
FUNCTION_HANDLER = "index.event_handler"
FUNCTION_MEMORY_MB = 512
FUNCTION_TIMEOUT_MINUTES = 1

DEFAULT_LAYER_ASSET = "lambda_/layers/detect_labels_function/python.zip"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"


def function_environment(
    otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT,
    log_level: str = "DEBUG",
    service_name: str = "lambda",
    export_timeout_seconds: int = 3,
) -> dict:
    return {
        "LOG_LEVEL": log_level,
        "OTEL_SERVICE_NAME": service_name,
        "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT": otlp_endpoint,
        "OTEL_EXPORTER_OTLP_TIMEOUT": str(export_timeout_seconds),
    }
