"""Exception hierarchy shared by adapters, services and the orchestrator."""

from __future__ import annotations


class LiveSalesError(Exception):
    """Base class for all livesales errors."""


class ConfigurationError(LiveSalesError):
    """Session or service configuration is missing or inconsistent."""


class AdapterError(LiveSalesError):
    """Transient platform I/O failure. Retried by the adapter itself."""


class AdapterConnectionError(AdapterError):
    """Adapter gave up after exhausting its reconnect/retry attempts."""

    def __init__(self, platform: str, attempts: int, last_error: BaseException | None = None):
        self.platform = platform
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"{platform} connection lost after {attempts} attempts{detail}")


class MalformedPayloadError(LiveSalesError):
    """A platform payload could not be turned into a ChatMessage."""


class ClassifierError(LiveSalesError):
    """Every configured model failed or returned an empty completion."""


class SessionNotFoundError(LiveSalesError):
    """No live session is registered under the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} is not active")
