"""
Async client for long-running jobs on a hosted inference service.

Components:
- replicate_jobs.inference: HTTP client, retry policy, schemas, errors
- replicate_jobs.streaming: event decoding and the background stream pump
- replicate_jobs.jobs: run/wait/stream orchestration and progress parsing
- replicate_jobs.infra: settings and structured logging

Usage:
    from replicate_jobs import ReplicateClient

    async with ReplicateClient() as client:
        output = await client.run("owner/name", {"prompt": "hello"})
"""

__version__ = "0.1.0"

from replicate_jobs.inference import (  # noqa: E402
    APIStatusError,
    BackoffPolicy,
    ConstantBackoff,
    ExponentialBackoff,
    InvalidIdentifierError,
    Job,
    JobIdentifier,
    JobStatus,
    JobTimeoutError,
    RemoteJobError,
    ReplicateClient,
    ReplicateError,
    Webhook,
)
from replicate_jobs.jobs import ProgressReading  # noqa: E402
from replicate_jobs.streaming import StreamEvent, StreamPump  # noqa: E402

__all__ = [
    "__version__",
    "ReplicateClient",
    "BackoffPolicy",
    "ConstantBackoff",
    "ExponentialBackoff",
    "JobIdentifier",
    "Job",
    "JobStatus",
    "Webhook",
    "ProgressReading",
    "StreamEvent",
    "StreamPump",
    "ReplicateError",
    "APIStatusError",
    "InvalidIdentifierError",
    "JobTimeoutError",
    "RemoteJobError",
]
