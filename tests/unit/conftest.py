"""
Shared fixtures for unit tests.

All HTTP traffic goes through httpx.MockTransport; nothing touches the
network.
"""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest

from replicate_jobs.infra.settings import clear_settings_cache
from replicate_jobs.inference.backoff import ConstantBackoff
from replicate_jobs.inference.client import ReplicateClient

# ============================================================================
# Test Constants
# ============================================================================

TEST_TOKEN = "test-token"
TEST_BASE_URL = "https://api.test/v1"
TEST_STREAM_URL = "https://stream.test/v1/streams/job1"


def job_payload(
    job_id: str = "job1",
    status: str = "starting",
    **fields: Any,
) -> dict[str, Any]:
    """Minimal job JSON as the service returns it."""
    payload = {
        "id": job_id,
        "status": status,
        "model": "owner/name",
        "version": "v1",
        "input": {"prompt": "hello"},
        "output": None,
        "error": None,
        "logs": "",
        "urls": {
            "get": f"{TEST_BASE_URL}/predictions/{job_id}",
            "cancel": f"{TEST_BASE_URL}/predictions/{job_id}/cancel",
        },
        "created_at": "2024-01-01T00:00:00Z",
    }
    payload.update(fields)
    return payload


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Fresh settings per test with a token in the environment."""
    monkeypatch.setenv("REPLICATE_API_TOKEN", TEST_TOKEN)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def make_client() -> Callable[..., ReplicateClient]:
    """Build a client whose requests are answered by ``handler``."""

    def _make(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> ReplicateClient:
        kwargs.setdefault("backoff", ConstantBackoff(base=0.0))
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ReplicateClient(
            api_token=TEST_TOKEN,
            base_url=TEST_BASE_URL,
            http_client=http_client,
            **kwargs,
        )

    return _make
