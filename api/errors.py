"""
Domain error taxonomy.

Services raise these; the exception handler in api.main renders them as
{"error": {"code": ..., "message": ..., "details": ...}} with the class's
HTTP status. Per-item failures inside bulk invite creation are collected
instead of raised.
"""

from typing import Any, Optional


class BidflowError(Exception):
    code = "BIDFLOW_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BidflowError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BidflowError):
    code = "NOT_FOUND"
    status_code = 404


class DuplicateVendorError(BidflowError):
    code = "DUPLICATE_VENDOR"
    status_code = 409

    def __init__(self, email: str, company_id: str):
        super().__init__(
            f"A company with email {email} already exists; invite it by company instead",
            {"email": email, "company_id": company_id},
        )
        self.email = email
        self.company_id = company_id


class NoAccessIssuedError(BidflowError):
    code = "NO_ACCESS_ISSUED"
    status_code = 409


class InvalidTransitionError(BidflowError):
    code = "INVALID_TRANSITION"
    status_code = 409


ACCESS_DENIED_MESSAGES = {
    "not_found": "This bid link is invalid or has expired.",
    "paused": "Access to this bid has been paused. Contact the project owner to restore it.",
    "revoked": "Access to this bid has been revoked and cannot be restored.",
    "account_required": "This bid requires you to sign in with your vendor account.",
    "pin_required": "This bid link is protected by a PIN. Enter it to continue.",
}


class AccessDeniedError(BidflowError):
    status_code = 403

    def __init__(self, reason: str):
        if reason not in ACCESS_DENIED_MESSAGES:
            raise ValueError(f"Unknown access denial reason: {reason}")
        super().__init__(ACCESS_DENIED_MESSAGES[reason], {"reason": reason})
        self.reason = reason
        self.code = f"ACCESS_{reason.upper()}"
        if reason == "not_found":
            self.status_code = 404


class NotCurrentError(BidflowError):
    code = "NOT_CURRENT"
    status_code = 409


class MissingTotalError(BidflowError):
    code = "MISSING_TOTAL"
    status_code = 422


class AlreadyAwardedError(BidflowError):
    code = "ALREADY_AWARDED"
    status_code = 409

    def __init__(self, bid_package_id: str, awarded_submission_id: Optional[str]):
        message = "This bid package has already been awarded"
        if awarded_submission_id:
            message += f" to submission {awarded_submission_id}"
        super().__init__(
            message,
            {
                "bid_package_id": bid_package_id,
                "awarded_submission_id": awarded_submission_id,
            },
        )
        self.awarded_submission_id = awarded_submission_id


class ConcurrencyConflictError(BidflowError):
    code = "CONCURRENCY_CONFLICT"
    status_code = 409

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message, {"retryable": retryable})
        self.retryable = retryable


class AlreadyInvitedError(BidflowError):
    code = "ALREADY_INVITED"
    status_code = 409


class PinRejectedError(BidflowError):
    """
    A wrong or locked-out PIN. The portal returns this rather than raising
    it, so the attempt counter commits with the request.
    """

    code = "PIN_INVALID"
    status_code = 403

    def __init__(self, attempts_remaining: int, locked_until: Optional[str] = None):
        if locked_until:
            message = "Too many incorrect PIN attempts. Try again later."
        else:
            message = "Incorrect PIN."
        super().__init__(
            message,
            {"attempts_remaining": attempts_remaining, "locked_until": locked_until},
        )
        if locked_until:
            self.code = "PIN_LOCKED"
            self.status_code = 423
