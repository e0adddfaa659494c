"""
Custom exceptions for the Quran Hifz trainer.

All exceptions inherit from HifzError so callers can catch library errors in one place.
"""

from typing import Any, Dict, Optional


class HifzError(Exception):
    """Base exception for all Hifz trainer errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message


class ConfigurationError(HifzError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, setting_name: Optional[str] = None) -> None:
        super().__init__(message, {"setting": setting_name} if setting_name else None)
        self.setting_name = setting_name


class QuranDataError(HifzError):
    """Raised when Quran reference data cannot be fetched or parsed."""

    def __init__(
        self,
        message: str = "Failed to load Quran reference data.",
        surah_number: Optional[int] = None,
    ) -> None:
        super().__init__(message, {"surah": surah_number} if surah_number is not None else None)
        self.surah_number = surah_number


class MicrophoneUnavailableError(HifzError):
    """Raised when the audio input cannot be acquired."""

    def __init__(self, reason: Optional[str] = None) -> None:
        message = "Microphone access needed."
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.reason = reason


class SessionStateError(HifzError):
    """Raised when a session operation is not allowed in the current lifecycle state."""

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(message, {"state": state} if state else None)
        self.state = state


class AuthError(HifzError):
    """Raised when authentication or token validation fails."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code
