from __future__ import annotations

from inventory_app.shopify_types import UserError


class ReconciliationError(Exception):
    """Base class for failures that end a reconciliation in the FAILED state."""


class ValidationError(ReconciliationError):
    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code


class NotFound(ReconciliationError):
    def __init__(self, *, resource: str, identifier: str) -> None:
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class RemoteRejected(ReconciliationError):
    def __init__(self, *, step: str, user_errors: tuple[UserError, ...]) -> None:
        messages = "; ".join(error.message for error in user_errors) or "no details"
        super().__init__(f"{step} rejected by Shopify: {messages}")
        self.step = step
        self.user_errors = user_errors
