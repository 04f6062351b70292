"""Exceptions raised by the access lifecycle services."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class AccessBotError(Exception):
    """Base error carrying a machine readable code."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class ConcurrentUpdateError(AccessBotError):
    """A conditional update lost its race against another writer."""

    def __init__(self, subscription_id: Optional[int]) -> None:
        super().__init__(
            code="concurrent_update",
            message=f"Subscription {subscription_id} was modified concurrently",
            status_code=status.HTTP_409_CONFLICT,
            detail={"subscription_id": subscription_id},
        )


class RequestAlreadyProcessedError(AccessBotError):
    """An access request was approved or rejected more than once."""

    def __init__(self, request_id: int, current_status: str) -> None:
        super().__init__(
            code="request_already_processed",
            message=f"Request {request_id} is already {current_status}",
            status_code=status.HTTP_409_CONFLICT,
            detail={"request_id": request_id, "status": current_status},
        )


class UnknownJobError(AccessBotError):
    """A scheduled job name was not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(
            code="unknown_job",
            message=f"No scheduled job named {name!r}",
            status_code=status.HTTP_404_NOT_FOUND,
        )


class MembershipProviderError(Exception):
    """The group membership provider failed to answer or act."""


class ConfigurationError(ValueError):
    """Environment configuration is missing or malformed."""


__all__ = [
    "AccessBotError",
    "ConcurrentUpdateError",
    "ConfigurationError",
    "MembershipProviderError",
    "RequestAlreadyProcessedError",
    "UnknownJobError",
]
