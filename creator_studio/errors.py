from __future__ import annotations


class WorkflowError(Exception):
    """Base of the connect/publish error taxonomy.

    ``code`` is the stable marker used in redirects and JSON bodies,
    ``status_code`` the HTTP status the API layer answers with.
    """

    code = "workflow_error"
    status_code = 500
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class Unauthenticated(WorkflowError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Not signed in"


class NotConfigured(WorkflowError):
    code = "not_configured"
    status_code = 500
    default_message = "Provider credentials are not configured"


class UserDenied(WorkflowError):
    code = "user_denied"
    status_code = 403
    default_message = "Authorization was declined"


class NoEligibleAccount(WorkflowError):
    code = "no_eligible_account"
    status_code = 400
    default_message = "No eligible account found on the provider"


class InvalidInput(WorkflowError):
    code = "invalid_input"
    status_code = 400
    default_message = "Invalid request"


class InvalidState(InvalidInput):
    default_message = "Invalid or expired OAuth state"


class NotConnected(WorkflowError):
    code = "not_connected"
    status_code = 503
    default_message = "Account is not connected"


class RemoteRejected(WorkflowError):
    code = "remote_rejected"
    status_code = 502
    default_message = "Provider rejected the request"

    def __init__(self, message: str | None = None, provider_status: int | None = None) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        if provider_status is not None and 400 <= provider_status < 500:
            self.status_code = 400


__all__ = [
    "InvalidInput",
    "InvalidState",
    "NoEligibleAccount",
    "NotConfigured",
    "NotConnected",
    "RemoteRejected",
    "Unauthenticated",
    "UserDenied",
    "WorkflowError",
]
