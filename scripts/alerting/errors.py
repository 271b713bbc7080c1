"""Exception types shared by the fetcher, the notification gate and the stores."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from scripts.alerting.models import Entity


class AlertingError(Exception):
    """Base class for all alerting errors."""


class FetchErrorKind(str, Enum):
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE = "invalid_response"
    RATE_LIMIT_EXHAUSTED = "rate_limit_exhausted"


class FetchError(AlertingError):
    """A paginated fetch stopped before the last page.

    ``partial_result`` holds every entity received before the failure, in
    arrival order. Callers may proceed with it but must treat it as possibly
    incomplete.
    """

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        partial_result: Sequence[Entity] = (),
        status_code: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.partial_result = tuple(partial_result)
        self.status_code = status_code
        self.cursor = cursor

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            return f"{self.kind.value}: {base} (HTTP {self.status_code})"
        return f"{self.kind.value}: {base}"


class AuthenticationError(AlertingError):
    """The access token for the management API could not be obtained."""


class StateCorruptionError(AlertingError):
    """Persisted notification state exists but cannot be parsed."""


class StatePersistenceError(AlertingError):
    """Notification state could not be written to the backing store."""


class NotifyError(AlertingError):
    """An alert could not be delivered on one or more channels."""
