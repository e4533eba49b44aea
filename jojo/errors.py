# jojo/errors.py
from typing import List, Optional


class ChatAppError(Exception):
    """Base error; `message` is what the client sees in `{"error": ...}`."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ChatAppError):
    status_code = 400


class ConflictError(ChatAppError):
    status_code = 400


class AuthError(ChatAppError):
    status_code = 401


class ConfigError(ChatAppError):
    status_code = 500


class GenerationError(ChatAppError):
    """All candidate models failed. `failures` holds one entry per attempt."""

    def __init__(self, message: str, failures: Optional[List] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.failures = list(failures or [])
        self.cause = cause


class RateLimitError(GenerationError):
    status_code = 429


class UpstreamExhaustedError(GenerationError):
    status_code = 500
