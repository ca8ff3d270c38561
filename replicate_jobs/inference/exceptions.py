"""
Exceptions for job client operations.

Provides specialized exceptions for:
- Caller-fixable validation failures
- Network/transport issues
- Non-success API responses
- Undecodable payloads
- Job timeouts and failed jobs
- Stream channel state
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError

from replicate_jobs.inference.schemas import APIErrorBody, Job


class ReplicateError(Exception):
    """
    Base exception for job client operations.

    Raised when a call fails for any reason.
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize client error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error": "replicate_error",
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(ReplicateError):
    """No usable credential or other startup misconfiguration."""

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "configuration_error"
        return result


class RequestValidationError(ReplicateError):
    """
    Request rejected before it reached the network.

    Caller-fixable and never retried.
    """

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "validation_error"
        return result


class InvalidIdentifierError(RequestValidationError):
    """Identifier is not ``owner/name`` or ``owner/name:version``."""

    def __init__(self, identifier: str):
        super().__init__(
            'invalid identifier, it must be in the format "owner/name" '
            'or "owner/name:version"',
            details={"identifier": identifier},
        )
        self.identifier = identifier


class TransportError(ReplicateError):
    """
    Connection, DNS or read failure.

    Raised immediately by the fetch engine; only the streaming pump
    reconnects on it.
    """

    def __init__(
        self,
        message: str = "Failed to reach the API",
        url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize transport error.

        Args:
            message: Human-readable error message
            url: URL that could not be reached
            original_error: Original exception that caused this error
            details: Additional error details
        """
        details = details or {}
        if url:
            details["url"] = url
        if original_error:
            details["original_error"] = str(original_error)
            details["original_error_type"] = type(original_error).__name__
        super().__init__(message, details=details)
        self.url = url
        self.original_error = original_error

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "transport_error"
        return result


class APIStatusError(ReplicateError):
    """
    Non-success HTTP response after retries were exhausted or refused.

    Carries the service's structured error body when it parsed.
    """

    def __init__(
        self,
        status_code: int,
        error_type: Optional[str] = None,
        title: Optional[str] = None,
        status: Optional[int] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        """
        Initialize API status error.

        Args:
            status_code: HTTP status of the final response
            error_type: ``type`` field of the error body
            title: ``title`` field of the error body
            status: ``status`` field of the error body (defaults to status_code)
            detail: ``detail`` field of the error body
            instance: ``instance`` field of the error body
        """
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.status = status if status is not None else status_code
        self.detail = detail
        self.instance = instance
        super().__init__(
            self._format(),
            details={
                "status_code": status_code,
                "type": error_type,
                "title": title,
                "status": self.status,
                "detail": detail,
                "instance": instance,
            },
        )

    @classmethod
    def from_response(cls, status_code: int, content: bytes) -> "APIStatusError":
        """
        Build from a response body.

        Args:
            status_code: HTTP status of the response
            content: Raw response body

        Returns:
            Error carrying the structured fields, or a generic detail
            when the body is not the service's error schema
        """
        try:
            body = APIErrorBody.model_validate_json(content)
        except ValidationError:
            text = content.decode("utf-8", errors="replace")
            return cls(status_code, detail=f"Unknown error: {text!r}")
        return cls(
            status_code,
            error_type=body.type,
            title=body.title,
            status=body.status,
            detail=body.detail,
            instance=body.instance,
        )

    def _format(self) -> str:
        components = [c for c in (self.error_type, self.title, self.detail) if c]
        output = ": ".join(components) if components else "unknown error"
        if self.instance:
            return f"{output} ({self.instance})"
        return output

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "api_status_error"
        return result


class ResponseDecodeError(ReplicateError):
    """
    Payload could not be decoded.

    Malformed JSON, unknown status values and schema violations all land
    here; nothing is silently defaulted.
    """

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "decode_error"
        return result


class InvalidEventDataError(ResponseDecodeError):
    """Stream event data is not ASCII."""

    def __init__(self, data: str):
        super().__init__("invalid UTF-8 data", details={"length": len(data)})


class JobTimeoutError(ReplicateError):
    """
    Wall-clock bound exceeded while waiting for a job.
    """

    def __init__(
        self,
        message: str = "Timed out waiting for job",
        timeout_seconds: Optional[float] = None,
        job_id: Optional[str] = None,
    ):
        details: dict[str, Any] = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if job_id:
            details["job_id"] = job_id
        super().__init__(message, details=details)
        self.timeout_seconds = timeout_seconds
        self.job_id = job_id

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "job_timeout"
        return result


class RemoteJobError(ReplicateError):
    """
    Job reached the failed status.

    ``error`` is the service-reported diagnostic, passed through untouched.
    """

    def __init__(self, job: Job):
        self.job = job
        self.error = job.error
        if isinstance(job.error, str):
            reason = job.error
        elif job.error is None:
            reason = "unknown error"
        else:
            reason = repr(job.error)
        super().__init__(
            f"Job failed: {reason}",
            details={"job_id": job.id, "error": job.error},
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "remote_job_error"
        return result


class UnexpectedJobStatusError(ReplicateError):
    """Job ended in a state the caller did not ask for."""

    def __init__(self, job: Job):
        self.job = job
        self.status = job.status
        self.logs = job.logs
        super().__init__(
            f"Unexpected job status: {job.status.value}. Logs: {job.logs!r}",
            details={"job_id": job.id, "status": job.status.value},
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "unexpected_job_status"
        return result


class JobRunError(ReplicateError):
    """
    A ``run`` call failed before the job finished.

    ``phase`` is ``"submission"`` or ``"polling"``; the underlying error is
    chained as ``__cause__``.
    """

    def __init__(self, phase: str, cause: Exception):
        self.phase = phase
        self.cause = cause
        super().__init__(
            f"Failed during {phase}: {cause}",
            details={"phase": phase, "cause_type": type(cause).__name__},
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["error"] = "job_run_error"
        return result


class StreamUnavailableError(ReplicateError):
    """Job has no ``stream`` URL."""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__(
            "streaming not supported or not enabled for this job",
            details={"job_id": job_id} if job_id else None,
        )


class ChannelClosedError(ReplicateError):
    """The receiving side of a stream channel has gone away."""

    def __init__(self, message: str = "Channel closed by receiver"):
        super().__init__(message)
