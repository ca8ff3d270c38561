"""Parsing of ``owner/name[:version]`` job identifiers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from replicate_jobs.inference.exceptions import InvalidIdentifierError


@dataclass(frozen=True)
class JobIdentifier:
    """A model reference, optionally pinned to a version."""
    owner: str
    name: str
    version: Optional[str] = None

    @classmethod
    def parse(cls, identifier: str) -> "JobIdentifier":
        """
        Parse an identifier string.

        Args:
            identifier: ``owner/name`` or ``owner/name:version``

        Returns:
            Parsed identifier

        Raises:
            InvalidIdentifierError: Wrong number of ``/`` or empty owner/name
        """
        parts = identifier.split("/")
        if len(parts) != 2:
            raise InvalidIdentifierError(identifier)

        owner, rest = parts
        name, sep, version = rest.partition(":")
        if not owner or not name:
            raise InvalidIdentifierError(identifier)

        return cls(owner=owner, name=name, version=version if sep else None)

    @property
    def model(self) -> str:
        """``owner/name`` without the version."""
        return f"{self.owner}/{self.name}"

    def __str__(self) -> str:
        if self.version is not None:
            return f"{self.model}:{self.version}"
        return self.model
