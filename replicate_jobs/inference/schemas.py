"""
Pydantic schemas for the job API.

These schemas define the wire contract with the inference service. Job
input and output stay open JSON values; only the envelope is typed.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from replicate_jobs.jobs.progress import ProgressReading


JobInput = dict[str, Any]


class JobStatus(str, Enum):
    """Lifecycle states reported by the service."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    def is_terminal(self) -> bool:
        """True once no further transitions can occur."""
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELED,
})


class JobSource(str, Enum):
    """Where the job was created."""
    WEB = "web"
    API = "api"


class WebhookEventType(str, Enum):
    """Job events a webhook can subscribe to."""
    START = "start"
    OUTPUT = "output"
    LOGS = "logs"
    COMPLETED = "completed"


class JobBaseModel(BaseModel):
    """Base model for service payloads."""

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
    )


# =============================================================================
# Job
# =============================================================================


class JobMetrics(JobBaseModel):
    """Timing and throughput figures reported for a job."""

    predict_time: Optional[float] = None
    total_time: Optional[float] = None
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None
    time_to_first_token: Optional[float] = None
    tokens_per_second: Optional[float] = None


class Job(JobBaseModel):
    """
    One remote computation run.

    A snapshot: the client never edits it, it only replaces it with a
    freshly fetched copy. ``output`` is expected only once succeeded and
    ``error`` only once failed; the orchestrator checks this rather than
    the schema, since a streaming job may carry partial output.
    """

    id: str = Field(..., description="Service-assigned job ID")
    status: JobStatus = Field(..., description="Current lifecycle state")
    model: Optional[str] = Field(None, description="owner/name of the model")
    version: Optional[str] = Field(None, description="Model version ID")
    input: JobInput = Field(default_factory=dict, description="Caller-supplied input")
    output: Any = Field(None, description="Output once succeeded")
    source: Optional[JobSource] = None
    error: Any = Field(None, description="Diagnostic once failed")
    logs: Optional[str] = Field(None, description="Append-only log text")
    metrics: Optional[JobMetrics] = None
    webhook: Optional[str] = None
    webhook_events_filter: Optional[list[WebhookEventType]] = None
    urls: Optional[dict[str, str]] = Field(
        None,
        description="Named URLs (get, cancel, stream)"
    )
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    @property
    def stream_url(self) -> Optional[str]:
        if not self.urls:
            return None
        return self.urls.get("stream")

    def progress(self) -> Optional["ProgressReading"]:
        """Most recent progress-bar reading in the logs, if any."""
        # Imported lazily to avoid a package-level import cycle
        from replicate_jobs.jobs.progress import parse_progress

        return parse_progress(self.logs)


# =============================================================================
# Requests
# =============================================================================


class Webhook(JobBaseModel):
    """Callback destination for job events."""

    url: str
    events: list[WebhookEventType] = Field(default_factory=list)


class CreateJobParams(JobBaseModel):
    """Optional fields sent alongside a job's input."""

    webhook: Optional[str] = None
    webhook_completed: Optional[str] = None
    webhook_events_filter: Optional[list[WebhookEventType]] = None
    stream: Optional[bool] = None

    @classmethod
    def for_webhook(
        cls,
        webhook: Optional[Webhook],
        stream: bool,
    ) -> "CreateJobParams":
        return cls(
            webhook=webhook.url if webhook else None,
            webhook_events_filter=list(webhook.events) if webhook and webhook.events else None,
            stream=stream,
        )


# =============================================================================
# Errors
# =============================================================================


class APIErrorBody(JobBaseModel):
    """Structured error body returned on non-success responses."""

    type: Optional[str] = None
    title: Optional[str] = None
    status: Optional[int] = None
    detail: Optional[str] = None
    instance: Optional[str] = None
