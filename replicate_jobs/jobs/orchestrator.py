"""
Job lifecycle orchestration.

Provides:
- run: submit, poll to a terminal state, return the output
- wait: poll any existing job to a terminal state
- stream: submit with streaming enabled and start a StreamPump
- stream_job: start a StreamPump for an existing job

Polling sleeps are ``asyncio.sleep``, so concurrent calls keep running
while one waits. Timeouts are wall-clock checks between polls.
"""
from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Optional

from replicate_jobs.infra.logging import LogContext, get_logger
from replicate_jobs.inference.exceptions import (
    JobRunError,
    JobTimeoutError,
    ReplicateError,
    RemoteJobError,
    ResponseDecodeError,
    UnexpectedJobStatusError,
)
from replicate_jobs.inference.identifier import JobIdentifier
from replicate_jobs.inference.schemas import (
    CreateJobParams,
    Job,
    JobInput,
    JobStatus,
    Webhook,
)

if TYPE_CHECKING:
    from replicate_jobs.inference.client import ReplicateClient
    from replicate_jobs.streaming.events import StreamEvent
    from replicate_jobs.streaming.pump import StreamPump

logger = get_logger(__name__)

RUN_POLL_INTERVAL_SECONDS = 5.0
RUN_TIMEOUT_SECONDS = 600.0

WAIT_POLL_INTERVAL_SECONDS = 1.0
WAIT_TIMEOUT_SECONDS = 3600.0


async def submit(
    client: "ReplicateClient",
    identifier: str,
    input: JobInput,
    webhook: Optional[Webhook] = None,
    stream: bool = False,
) -> Job:
    """
    Create a job from an identifier string.

    A pinned version is submitted by version; otherwise by ``owner/name``.

    Raises:
        InvalidIdentifierError: Malformed identifier
    """
    parsed = JobIdentifier.parse(identifier)
    params = CreateJobParams.for_webhook(webhook, stream=stream)

    if parsed.version is not None:
        return await client.create_job(version=parsed.version, input=input, params=params)
    return await client.create_job(model=parsed.model, input=input, params=params)


async def run(
    client: "ReplicateClient",
    identifier: str,
    input: JobInput,
    webhook: Optional[Webhook] = None,
    *,
    poll_interval: float = RUN_POLL_INTERVAL_SECONDS,
    timeout: float = RUN_TIMEOUT_SECONDS,
) -> Any:
    """
    Run a job to completion and return its output.

    Args:
        client: Client used for submission and polling
        identifier: ``owner/name`` or ``owner/name:version``
        input: Job input
        webhook: Optional webhook to register with the job
        poll_interval: Seconds between polls
        timeout: Wall-clock bound in seconds

    Returns:
        The job's output

    Raises:
        InvalidIdentifierError: Malformed identifier
        JobRunError: Submission or a poll failed (cause chained)
        JobTimeoutError: Still running after ``timeout``
        RemoteJobError: Job failed
        ResponseDecodeError: Job succeeded without output
        UnexpectedJobStatusError: Job ended canceled
    """
    # Parse up front so a bad identifier surfaces as itself, not a JobRunError
    JobIdentifier.parse(identifier)

    try:
        job = await submit(client, identifier, input, webhook, stream=False)
    except ReplicateError as e:
        logger.error("job_submission_failed", extra={"identifier": identifier, "error": str(e)})
        raise JobRunError("submission", e) from e

    with LogContext(job_id=job.id):
        logger.info("job_submitted", extra={"identifier": identifier, "status": job.status.value})

        start_time = time.monotonic()
        while job.status in (JobStatus.STARTING, JobStatus.PROCESSING):
            if time.monotonic() - start_time > timeout:
                raise JobTimeoutError(
                    f"Job timed out after {timeout}s",
                    timeout_seconds=timeout,
                    job_id=job.id,
                )
            await asyncio.sleep(poll_interval)
            try:
                job = await client.get_job(job.id)
            except ReplicateError as e:
                logger.error("job_poll_failed", extra={"error": str(e)})
                raise JobRunError("polling", e) from e

            logger.debug("job_polled", extra={"status": job.status.value})

        logger.info("job_finished", extra={"status": job.status.value})

    if job.status == JobStatus.SUCCEEDED:
        if job.output is None:
            raise ResponseDecodeError(
                "Job succeeded but no output available",
                details={"job_id": job.id},
            )
        return job.output
    if job.status == JobStatus.FAILED:
        raise RemoteJobError(job)
    raise UnexpectedJobStatusError(job)


async def wait(
    client: "ReplicateClient",
    job: Job,
    *,
    poll_interval: float = WAIT_POLL_INTERVAL_SECONDS,
    timeout: float = WAIT_TIMEOUT_SECONDS,
) -> Job:
    """
    Poll a job until it reaches a terminal status.

    Failed and canceled jobs are returned like succeeded ones; inspect
    ``status`` on the result.

    Args:
        client: Client used for polling
        job: Snapshot to start from
        poll_interval: Seconds between polls
        timeout: Wall-clock bound in seconds

    Returns:
        The terminal snapshot

    Raises:
        JobTimeoutError: Not terminal after ``timeout``
    """
    start_time = time.monotonic()
    current = job

    while True:
        if time.monotonic() - start_time > timeout:
            raise JobTimeoutError(
                "Timeout waiting for job to complete",
                timeout_seconds=timeout,
                job_id=current.id,
            )
        if current.is_terminal():
            return current

        await asyncio.sleep(poll_interval)
        current = await client.get_job(current.id)


async def stream(
    client: "ReplicateClient",
    identifier: str,
    input: JobInput,
    webhook: Optional[Webhook] = None,
    *,
    cancel_event: Optional[asyncio.Event] = None,
) -> "StreamPump":
    """
    Submit a job with streaming enabled and start consuming its stream.

    Returns:
        A started StreamPump

    Raises:
        InvalidIdentifierError: Malformed identifier
        StreamUnavailableError: The service returned no stream URL
    """
    job = await submit(client, identifier, input, webhook, stream=True)
    logger.info("job_submitted", extra={"job_id": job.id, "identifier": identifier, "stream": True})
    return await stream_job(client, job, cancel_event=cancel_event)


async def stream_job(
    client: "ReplicateClient",
    job: Job,
    last_event: Optional["StreamEvent"] = None,
    *,
    cancel_event: Optional[asyncio.Event] = None,
) -> "StreamPump":
    """Start a pump for an existing job; see ReplicateClient.stream_job."""
    return await client.stream_job(job, last_event=last_event, cancel_event=cancel_event)
