"""Module for the main LambdaTrace Stack."""

# Standard library imports
from typing import Optional

# Third party imports
from aws_cdk import (
    CfnOutput,
    Duration,
    Fn,
    RemovalPolicy,
    Stack,
    aws_s3 as s3,
    aws_lambda as lambda_,
    aws_iam as iam,
    aws_logs as logs,
    aws_lambda_event_sources as event_sources,
)
from constructs import Construct

# Local application/library specific imports
from lambda_trace.function_settings import (
    DEFAULT_LAYER_ASSET,
    DEFAULT_OTLP_ENDPOINT,
    FUNCTION_ASSET,
    FUNCTION_HANDLER,
    FUNCTION_MEMORY_MB,
    FUNCTION_TIMEOUT_MINUTES,
    function_environment,
)


class LambdaTraceStack(Stack):
    """Bucket and label detection function, traced from X-Ray into OTLP."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT,
        layer_asset_path: Optional[str] = DEFAULT_LAYER_ASSET,
        **kwargs,
    ) -> None:
        """Construct a new LambdaTraceStack."""
        super().__init__(scope, construct_id, **kwargs)

        source_bucket = s3.Bucket(
            scope=self,
            id="RekognitionSourceBucket",
            auto_delete_objects=True,
            removal_policy=RemovalPolicy.DESTROY,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
        )

        role = iam.Role(
            scope=self,
            id="LambdaRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                ),
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "AWSXrayWriteOnlyAccess"
                ),
            ],
        )
        role.add_to_policy(
            iam.PolicyStatement(
                effect=iam.Effect.ALLOW,
                actions=["rekognition:DetectLabels"],
                resources=["*"],
            )
        )
        # Rekognition reads the image with the caller's permissions.
        source_bucket.grant_read(role)

        layers = []
        if layer_asset_path:
            layers.append(
                lambda_.LayerVersion(
                    scope=self,
                    id="DetectLabelsFunctionLayer",
                    code=lambda_.Code.from_asset(layer_asset_path),
                )
            )

        detect_labels_function = lambda_.Function(
            scope=self,
            id="DetectLabelsFunction",
            code=lambda_.Code.from_asset(FUNCTION_ASSET),
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler=FUNCTION_HANDLER,
            memory_size=FUNCTION_MEMORY_MB,
            timeout=Duration.minutes(FUNCTION_TIMEOUT_MINUTES),
            layers=layers,
            role=role,
            tracing=lambda_.Tracing.ACTIVE,
            environment=function_environment(otlp_endpoint=otlp_endpoint),
        )

        logs.LogGroup(
            scope=self,
            id="DetectLabelsFunctionLogGroup",
            log_group_name=Fn.sub(
                "/aws/lambda/${Function}",
                {"Function": detect_labels_function.function_name},
            ),
            retention=logs.RetentionDays.FIVE_DAYS,
            removal_policy=RemovalPolicy.DESTROY,
        )

        # Trigger the function on every upload.
        detect_labels_function.add_event_source(
            event_sources.S3EventSource(
                source_bucket,
                events=[s3.EventType.OBJECT_CREATED],
            )
        )

        CfnOutput(
            scope=self,
            id="RekognitionSourceBucketName",
            value=source_bucket.bucket_name,
        )
