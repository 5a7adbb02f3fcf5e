from __future__ import annotations

from typing import Any

REDACT_TOKEN = "***redacted***"


def typed_error(code: str, message: str, *, details: dict | None = None, **extra: Any) -> dict:
    """
    Standard error envelope:
      {"error": {"code": code, "message": message, "details": {...}}, ...extra}
    """
    err: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        err["error"]["details"] = details
    if extra:
        err.update(extra)
    return err


class AdsError(Exception):
    """Base class for failures that carry a structured kind tag.

    The kind is attached where the failure happens so that nothing further
    up has to re-derive it from message text.
    """

    kind = "internal"

    def details(self) -> dict[str, Any]:
        return {}

    def to_error(self) -> dict:
        return typed_error(self.kind, str(self), details=self.details())


class ConfigurationError(AdsError):
    """A required credential or setting is missing. Never retried."""

    kind = "configuration"


class UpstreamError(AdsError):
    """A failed upstream HTTP call, with the upstream's own error fields preserved."""

    kind = "upstream"

    def __init__(
        self,
        *,
        endpoint: str,
        status: int | None = None,
        code: int | str | None = None,
        message: str | None = None,
        error_type: str | None = None,
        attempts: int = 1,
    ) -> None:
        self.endpoint = endpoint
        self.status = status
        self.code = code if code is not None else status
        self.message = message or (f"HTTP {status}" if status is not None else "Unknown error")
        self.error_type = error_type or "Unknown"
        self.attempts = attempts
        super().__init__(self._render())

    def _render(self) -> str:
        return (
            f"Upstream API error ({self.code}): {self.message} "
            f"| Type: {self.error_type} | Endpoint: {self.endpoint}"
        )

    @classmethod
    def from_payload(cls, *, endpoint: str, status: int, payload: Any, attempts: int = 1) -> "UpstreamError":
        """Build from an upstream `{"error": {message, code, type}}` body."""
        err = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(err, dict):
            err = {}
        return cls(
            endpoint=endpoint,
            status=status,
            code=err.get("code"),
            message=err.get("message"),
            error_type=err.get("type"),
            attempts=attempts,
        )

    def details(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "upstream_code": self.code,
            "upstream_message": self.message,
            "upstream_type": self.error_type,
            "endpoint": self.endpoint,
            "attempts": self.attempts,
        }


class UpstreamTransientError(UpstreamError):
    """5xx / 429 / 408: retried, surfaced only after the retry budget is spent."""

    kind = "upstream_transient"


class UpstreamTerminalError(UpstreamError):
    """Other 4xx, malformed payloads and network failures: surfaced immediately."""

    kind = "upstream_terminal"


class RequestTimeoutError(UpstreamTransientError):
    """A single attempt (or a whole call) exceeded its deadline."""

    kind = "timeout"

    def __init__(self, *, endpoint: str, timeout: float, attempts: int = 1, message: str | None = None) -> None:
        self.timeout = timeout
        super().__init__(
            endpoint=endpoint,
            message=message or f"Request timeout after {attempts} attempt(s) ({timeout:g}s each)",
            error_type="Timeout",
            code="timeout",
            attempts=attempts,
        )

    def details(self) -> dict[str, Any]:
        out = super().details()
        out["timeout_s"] = self.timeout
        return out


class ProtocolError(AdsError):
    """Malformed inbound message; mapped onto a JSON-RPC error code."""

    kind = "protocol"

    def __init__(self, code: int, message: str) -> None:
        self.code = code
        super().__init__(message)


class ChannelClosedError(AdsError):
    """Write attempted on a session channel that is closed or not draining."""

    kind = "channel_closed"


class InvalidArgumentsError(AdsError):
    """Tool arguments missing or of the wrong shape. Never retried."""

    kind = "invalid_arguments"
