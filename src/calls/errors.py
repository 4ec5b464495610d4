"""Domain-specific exceptions for call orchestration.

These exceptions are safe to import from API layers without pulling in the engine.
"""

from __future__ import annotations


class CallError(Exception):
    code: str = "call_error"
    status_code: int = 400
    default_detail: str = "Call error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class AuthError(CallError):
    code = "auth_error"
    status_code = 401
    default_detail = "Invalid credential."


class PreferencesIncomplete(CallError):
    code = "preferences_incomplete"
    status_code = 422
    default_detail = "Complete your gender and language preferences first."


class NoCompatiblePartner(CallError):
    code = "no_partner"
    status_code = 404
    default_detail = "No compatible partner available."


class InsufficientBalance(CallError):
    code = "low_balance"
    status_code = 402
    default_detail = "Low balance. Please recharge first."


class PeerLowBalance(InsufficientBalance):
    code = "peer_low_balance"
    default_detail = "Your partner cannot start this call right now."


class PeerUnavailable(CallError):
    code = "peer_unavailable"
    status_code = 409
    default_detail = "That user cannot take a call right now."

    def __init__(self, detail: str | None = None, *, code: str | None = None) -> None:
        super().__init__(detail)
        if code:
            self.code = code


class AlreadyInCall(CallError):
    code = "busy"
    status_code = 409
    default_detail = "You are already ringing or in a call."


class StaleSessionReference(CallError):
    code = "stale_session"
    status_code = 404
    default_detail = "Unknown or finished call session."


class UnknownUser(CallError):
    code = "unknown_user"
    status_code = 404
    default_detail = "User not found."


class UserAlreadyExists(CallError):
    code = "user_exists"
    status_code = 409
    default_detail = "Phone already exists."


class InvalidRequest(CallError):
    code = "invalid_request"
    status_code = 422
    default_detail = "Malformed request."
