from typing import Optional


class ChatError(Exception):
    """Base error; ``reason`` is the text reported back to the client."""

    reason = "Request failed"

    def __init__(self, reason: Optional[str] = None):
        if reason is not None:
            self.reason = reason
        super().__init__(self.reason)


class AuthenticationFailure(ChatError):
    reason = "Invalid username or password"


class SignupRequired(AuthenticationFailure):
    reason = "User not found. Would you like to sign up?"


class ValidationFailure(ChatError):
    reason = "Invalid request"


class UsernameTaken(ValidationFailure):
    reason = "Username already taken"


class PasswordSetupRequired(ValidationFailure):
    reason = "Password setup required"


class PasswordAlreadySet(ValidationFailure):
    reason = "Password already set for this user"


class InvalidEvent(ValidationFailure):
    def __init__(self, event: Optional[str], detail: str):
        self.event = event
        self.detail = detail
        super().__init__(f"Invalid request: {detail}")


class StoreFailure(ChatError):
    reason = "Service unavailable, please try again"
