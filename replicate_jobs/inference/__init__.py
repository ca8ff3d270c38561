"""
HTTP layer for the job API.

Provides:
- ReplicateClient: resilient fetch engine plus job calls
- BackoffPolicy: ConstantBackoff / ExponentialBackoff retry delays
- JobIdentifier: ``owner/name[:version]`` parsing
- Pydantic schemas for jobs and requests
- The exception hierarchy

Usage:
    client = ReplicateClient(api_token="...", max_retries=3)
    job = await client.create_job(model="owner/name", input={"prompt": "hi"})
"""
from replicate_jobs.inference.exceptions import (
    ReplicateError,
    ConfigurationError,
    RequestValidationError,
    InvalidIdentifierError,
    TransportError,
    APIStatusError,
    ResponseDecodeError,
    InvalidEventDataError,
    JobTimeoutError,
    RemoteJobError,
    UnexpectedJobStatusError,
    JobRunError,
    StreamUnavailableError,
    ChannelClosedError,
)
from replicate_jobs.inference.schemas import (
    Job,
    JobInput,
    JobMetrics,
    JobSource,
    JobStatus,
    Webhook,
    WebhookEventType,
    CreateJobParams,
    APIErrorBody,
)
from replicate_jobs.inference.backoff import (
    BackoffPolicy,
    ConstantBackoff,
    ExponentialBackoff,
    default_backoff,
)
from replicate_jobs.inference.identifier import JobIdentifier
from replicate_jobs.inference.client import (
    ReplicateClient,
    RetryDecision,
    should_retry,
)

__all__ = [
    # Client
    "ReplicateClient",
    "RetryDecision",
    "should_retry",
    # Retry policies
    "BackoffPolicy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "default_backoff",
    # Identifiers and schemas
    "JobIdentifier",
    "Job",
    "JobInput",
    "JobMetrics",
    "JobSource",
    "JobStatus",
    "Webhook",
    "WebhookEventType",
    "CreateJobParams",
    "APIErrorBody",
    # Exceptions
    "ReplicateError",
    "ConfigurationError",
    "RequestValidationError",
    "InvalidIdentifierError",
    "TransportError",
    "APIStatusError",
    "ResponseDecodeError",
    "InvalidEventDataError",
    "JobTimeoutError",
    "RemoteJobError",
    "UnexpectedJobStatusError",
    "JobRunError",
    "StreamUnavailableError",
    "ChannelClosedError",
]
