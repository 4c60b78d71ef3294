"""Errors raised by WiFi Direct platform backends."""

from p2p.models import FailureReason


class P2pError(Exception):
    """Base class for WiFi Direct platform errors."""


class PlatformUnsupported(P2pError):
    """The host has no usable WiFi Direct service."""


class RequestRejected(P2pError):
    """The platform refused a request; ``reason`` is the platform code."""

    def __init__(self, reason: int = FailureReason.ERROR, detail: str = "") -> None:
        self.reason = int(reason)
        self.detail = detail
        message = f"request rejected (reason {self.reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
