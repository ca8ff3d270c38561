"""
Unit tests for job identifier parsing.
"""
import dataclasses

import pytest

from replicate_jobs.inference.exceptions import (
    InvalidIdentifierError,
    RequestValidationError,
)
from replicate_jobs.inference.identifier import JobIdentifier


class TestParseValid:
    """Accepted identifier shapes."""

    def test_with_version(self):
        identifier = JobIdentifier.parse("owner/name:v1")

        assert identifier.owner == "owner"
        assert identifier.name == "name"
        assert identifier.version == "v1"
        assert str(identifier) == "owner/name:v1"

    def test_without_version(self):
        identifier = JobIdentifier.parse("black-forest-labs/flux-schnell")

        assert identifier.owner == "black-forest-labs"
        assert identifier.name == "flux-schnell"
        assert identifier.version is None
        assert str(identifier) == "black-forest-labs/flux-schnell"

    def test_version_split_on_first_colon(self):
        identifier = JobIdentifier.parse("owner/name:abc:def")

        assert identifier.name == "name"
        assert identifier.version == "abc:def"

    def test_model_property_drops_version(self):
        assert JobIdentifier.parse("owner/name:abc123").model == "owner/name"

    def test_immutable(self):
        identifier = JobIdentifier.parse("owner/name")

        with pytest.raises(dataclasses.FrozenInstanceError):
            identifier.owner = "other"


class TestParseInvalid:
    """Rejected identifier shapes."""

    @pytest.mark.parametrize(
        "value",
        [
            "invalid",
            "/",
            "",
            "/name",
            "owner/",
            "owner/:v1",
            "a/b/c",
            "owner/name/extra:v1",
        ],
    )
    def test_rejected(self, value):
        with pytest.raises(InvalidIdentifierError):
            JobIdentifier.parse(value)

    def test_error_is_validation_error(self):
        with pytest.raises(RequestValidationError) as exc_info:
            JobIdentifier.parse("invalid")

        assert exc_info.value.identifier == "invalid"
        assert "owner/name" in str(exc_info.value)
