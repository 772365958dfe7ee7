#!/usr/bin/env python3

# Third party imports
import aws_cdk as cdk

# Local application/library specific imports
from lambda_trace.lambda_trace_stack import LambdaTraceStack


app = cdk.App()
LambdaTraceStack(
    scope=app,
    construct_id="LambdaTraceStack",
)

app.synth()
