from __future__ import annotations


class ChatError(Exception):
    """Base error carrying the HTTP status and the message shown to the client."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(ChatError):
    status_code = 500


class AuthorizationError(ChatError):
    status_code = 401


class BadRequestError(ChatError):
    status_code = 400


class UpstreamError(ChatError):
    """The generation API failed or answered something unusable."""

    status_code = 500


class UpstreamRateLimitError(UpstreamError):
    status_code = 429


class UpstreamValidationError(UpstreamError):
    status_code = 400
