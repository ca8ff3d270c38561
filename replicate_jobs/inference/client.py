"""
Resilient HTTP client for the job API.

Provides:
- ReplicateClient: the single point of contact with the REST API
- should_retry: status/method retry classification

Architecture:
- Every REST call goes through ReplicateClient.fetch
- Retries are driven by HTTP status only; transport failures surface at once
- Delays come from a pluggable BackoffPolicy
- Orchestration (run/wait/stream) lives in replicate_jobs.jobs and is
  exposed here as thin delegating methods

RETRY SEMANTICS:
- GET: idempotent, retried on 429 and any 5xx
- Everything else: retried on 429 only (the request was refused, not run)
"""
from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from replicate_jobs import __version__
from replicate_jobs.infra.logging import (
    clear_request_id,
    get_logger,
    get_request_id,
    set_request_id,
)
from replicate_jobs.infra.settings import get_settings
from replicate_jobs.inference.backoff import BackoffPolicy, default_backoff
from replicate_jobs.inference.exceptions import (
    APIStatusError,
    ConfigurationError,
    RequestValidationError,
    ResponseDecodeError,
    TransportError,
)
from replicate_jobs.inference.schemas import (
    CreateJobParams,
    Job,
    JobInput,
    Webhook,
)
from replicate_jobs.jobs import orchestrator
from replicate_jobs.streaming.events import StreamEvent
from replicate_jobs.streaming.pump import StreamPump

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

USER_AGENT = f"replicate-jobs/{__version__}"


class RetryDecision(str, Enum):
    """Decision on whether to retry a request."""
    RETRY = "retry"           # Request was refused or the read can be repeated
    NO_RETRY = "no_retry"     # Retrying could repeat a side effect


def should_retry(method: str, status_code: int) -> RetryDecision:
    """
    Classify a non-success response.

    Args:
        method: HTTP method of the request
        status_code: Response status code

    Returns:
        RetryDecision for this method/status pair
    """
    if status_code == 429:
        return RetryDecision.RETRY
    if method.upper() == "GET" and 500 <= status_code < 600:
        return RetryDecision.RETRY
    return RetryDecision.NO_RETRY


class ReplicateClient:
    """
    Async client for the hosted inference API.

    Features:
    - Bearer authentication
    - Status-driven retry with pluggable backoff
    - Structured error decoding
    - Connection pooling through a shared httpx.AsyncClient

    Configuration is fixed at construction and safe to share across
    concurrent calls.

    Usage:
        async with ReplicateClient() as client:
            output = await client.run("owner/name", {"prompt": "hello"})
    """

    def __init__(
        self,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            api_token: Bearer token (default: REPLICATE_API_TOKEN)
            base_url: API root (default: from settings)
            max_retries: Retries per logical request (default: from settings)
            backoff: Retry delay policy (default: exponential from settings)
            timeout_seconds: Per-request transport timeout (default: from settings)
            http_client: Pre-built httpx client, e.g. with a mock transport

        Raises:
            ConfigurationError: If no token is available
        """
        settings = get_settings()

        if api_token is None:
            token = settings.get_api_token()
        else:
            token = api_token.strip()
            if not token:
                raise ConfigurationError("No auth token provided")

        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self._api_token = token
        self._base_url = (base_url or settings.REPLICATE_BASE_URL).rstrip("/")
        self._max_retries = (
            max_retries if max_retries is not None else settings.REPLICATE_MAX_RETRIES
        )
        self._backoff = backoff or default_backoff(
            base=settings.REPLICATE_BACKOFF_BASE_SECONDS,
            multiplier=settings.REPLICATE_BACKOFF_MULTIPLIER,
            jitter=settings.REPLICATE_BACKOFF_JITTER_SECONDS,
        )
        self._timeout_seconds = timeout_seconds or settings.REPLICATE_TIMEOUT_SECONDS
        self._stream_queue_size = settings.STREAM_QUEUE_SIZE
        self._stream_reconnect_delay = settings.STREAM_RECONNECT_DELAY_SECONDS

        self._client = http_client
        self._owns_client = http_client is None

        logger.debug(
            "replicate_client_initialized",
            extra={
                "base_url": self._base_url,
                "max_retries": self._max_retries,
                "backoff": repr(self._backoff),
            }
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_seconds),
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "ReplicateClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Fetch engine
    # =========================================================================

    async def fetch(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        *,
        response_model: Optional[type[ModelT]] = None,
    ) -> Any:
        """
        Perform one logical API call with retry.

        Args:
            method: HTTP method
            path: Path appended to the base URL
            body: JSON-serializable request body
            response_model: Pydantic model to validate the response into

        Returns:
            Decoded JSON (or a response_model instance; None for an empty body)

        Raises:
            TransportError: Connection/DNS/read failure (not retried)
            APIStatusError: Non-success response that was not retried
            ResponseDecodeError: Success response that could not be decoded
        """
        outer_request_id = get_request_id()
        if outer_request_id is None:
            set_request_id()
        try:
            return await self._send_request(method.upper(), path, body, response_model)
        finally:
            if outer_request_id is None:
                clear_request_id()

    async def _send_request(
        self,
        method: str,
        path: str,
        body: Optional[Any],
        response_model: Optional[type[ModelT]],
    ) -> Any:
        client = await self._get_client()
        url = f"{self._base_url}{path}"

        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        content = json.dumps(body).encode() if body is not None else None

        logger.info("api_request", extra={"method": method, "url": url})

        attempt = 0
        while True:
            logger.debug(
                "api_request_attempt",
                extra={
                    "attempt": attempt + 1,
                    "max_attempts": self._max_retries + 1,
                }
            )

            try:
                response = await client.request(
                    method,
                    url,
                    content=content,
                    headers=headers,
                )
            except httpx.TransportError as e:
                logger.error(
                    "api_transport_error",
                    extra={
                        "attempt": attempt + 1,
                        "url": url,
                        "error": str(e),
                    }
                )
                raise TransportError(
                    f"Failed to send request: {e}",
                    url=url,
                    original_error=e,
                ) from e

            if response.is_success:
                logger.debug(
                    "api_response",
                    extra={"attempt": attempt + 1, "status_code": response.status_code}
                )
                return self._decode(response, response_model)

            retry_decision = should_retry(method, response.status_code)
            if retry_decision == RetryDecision.NO_RETRY or attempt >= self._max_retries:
                error = APIStatusError.from_response(response.status_code, response.content)
                logger.error(
                    "api_request_failed",
                    extra={
                        "attempt": attempt + 1,
                        "status_code": response.status_code,
                        "retry_decision": retry_decision.value,
                        "error": str(error),
                    }
                )
                raise error

            delay = self._backoff.next_delay(attempt)
            logger.warning(
                "api_request_retry",
                extra={
                    "attempt": attempt + 1,
                    "max_retries": self._max_retries,
                    "status_code": response.status_code,
                    "delay_seconds": round(delay, 3),
                }
            )
            await asyncio.sleep(delay)
            attempt += 1

    @staticmethod
    def _decode(
        response: httpx.Response,
        response_model: Optional[type[ModelT]],
    ) -> Any:
        if not response.content:
            if response_model is not None:
                raise ResponseDecodeError(
                    f"Empty response body, expected {response_model.__name__}",
                    details={"status_code": response.status_code},
                )
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseDecodeError(
                f"Malformed JSON response: {e}",
                details={"status_code": response.status_code},
            ) from e

        if response_model is None:
            return data

        try:
            return response_model.model_validate(data)
        except ValidationError as e:
            raise ResponseDecodeError(
                f"Response did not match {response_model.__name__}: {e}",
                details={"error_count": e.error_count()},
            ) from e

    # =========================================================================
    # Job calls
    # =========================================================================

    async def create_job(
        self,
        model: Optional[str] = None,
        version: Optional[str] = None,
        deployment: Optional[str] = None,
        input: Optional[JobInput] = None,
        params: Optional[CreateJobParams] = None,
    ) -> Job:
        """
        Submit a job.

        Exactly one of model, version or deployment selects what runs.

        Args:
            model: ``owner/name`` of a model
            version: Model version ID
            deployment: ``owner/name`` of a deployment
            input: Job input
            params: Webhook and streaming options

        Returns:
            The created job

        Raises:
            RequestValidationError: Zero or several selectors given
        """
        selectors = [s for s in (model, version, deployment) if s is not None]
        if len(selectors) != 1:
            raise RequestValidationError(
                "Exactly one of 'model', 'version', or 'deployment' must be specified.",
                details={
                    "model": model,
                    "version": version,
                    "deployment": deployment,
                },
            )

        body: dict[str, Any] = {"input": input or {}}
        if version is not None:
            body["version"] = version
        if params is not None:
            body.update(params.model_dump(mode="json", exclude_none=True))

        if model is not None:
            path = f"/models/{model}/predictions"
        elif deployment is not None:
            path = f"/deployments/{deployment}/predictions"
        else:
            path = "/predictions"

        return await self.fetch("POST", path, body, response_model=Job)

    async def get_job(self, job_id: str) -> Job:
        return await self.fetch("GET", f"/predictions/{job_id}", response_model=Job)

    async def cancel_job(self, job_id: str) -> Job:
        return await self.fetch("POST", f"/predictions/{job_id}/cancel", response_model=Job)

    # =========================================================================
    # Orchestration
    # =========================================================================

    async def run(
        self,
        identifier: str,
        input: JobInput,
        webhook: Optional[Webhook] = None,
        *,
        poll_interval: float = orchestrator.RUN_POLL_INTERVAL_SECONDS,
        timeout: float = orchestrator.RUN_TIMEOUT_SECONDS,
    ) -> Any:
        """Submit a job and poll it to completion; see orchestrator.run."""
        return await orchestrator.run(
            self,
            identifier,
            input,
            webhook,
            poll_interval=poll_interval,
            timeout=timeout,
        )

    async def wait(
        self,
        job: Job,
        poll_interval: float = orchestrator.WAIT_POLL_INTERVAL_SECONDS,
        timeout: float = orchestrator.WAIT_TIMEOUT_SECONDS,
    ) -> Job:
        """Poll an existing job until terminal; see orchestrator.wait."""
        return await orchestrator.wait(self, job, poll_interval=poll_interval, timeout=timeout)

    async def stream(
        self,
        identifier: str,
        input: JobInput,
        webhook: Optional[Webhook] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamPump:
        """Submit a streaming job and start its pump; see orchestrator.stream."""
        return await orchestrator.stream(
            self,
            identifier,
            input,
            webhook,
            cancel_event=cancel_event,
        )

    async def stream_job(
        self,
        job: Job,
        last_event: Optional[StreamEvent] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamPump:
        """
        Start a pump for an existing job.

        Args:
            job: Job created with streaming enabled
            last_event: Last event already seen, for resumption
            cancel_event: Set to stop the pump

        Returns:
            A started StreamPump

        Raises:
            StreamUnavailableError: The job has no stream URL
        """
        client = await self._get_client()
        pump = StreamPump(
            client,
            job,
            last_event=last_event,
            max_queue_size=self._stream_queue_size,
            reconnect_delay=self._stream_reconnect_delay,
            cancel_event=cancel_event,
            timeout_seconds=self._timeout_seconds,
        )
        pump.start()
        return pump
