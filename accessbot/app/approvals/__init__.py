"""Admin review of premium access requests."""

from .service import ApprovalResult, ApprovalService

__all__ = ["ApprovalResult", "ApprovalService"]
