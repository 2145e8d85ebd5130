"""Error taxonomy shared by the store, the extraction client and the API.

Every error is scoped to the user action that raised it; none of them is
fatal to the process.
"""

from __future__ import annotations

from typing import Optional


class VocabAutomationError(Exception):
    """Base class for all recoverable application errors."""


class ValidationError(VocabAutomationError):
    """Input rejected before anything was mutated."""


class UpstreamCredentialError(VocabAutomationError):
    """The extraction service key is missing or was rejected."""

    def __init__(self, message: str = "Ungültiger oder fehlender API-Schlüssel.") -> None:
        super().__init__(message)


class UpstreamFailure(VocabAutomationError):
    """The extraction call failed for any reason other than the credential."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(VocabAutomationError):
    """A store operation failed and was rolled back."""


class EntityNotFoundError(PersistenceError):
    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class DocumentGenerationError(VocabAutomationError):
    """Rendering the printable test sheet failed."""


class StaleResultError(VocabAutomationError):
    """A newer extraction request superseded this one; its result was dropped."""

    def __init__(self, ticket: int, latest: int) -> None:
        super().__init__(f"extraction request {ticket} superseded by request {latest}")
        self.ticket = ticket
        self.latest = latest


__all__ = [
    "VocabAutomationError",
    "ValidationError",
    "UpstreamCredentialError",
    "UpstreamFailure",
    "PersistenceError",
    "EntityNotFoundError",
    "DocumentGenerationError",
    "StaleResultError",
]
