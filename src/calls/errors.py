"""Domain-specific exceptions for call bridging.

These exceptions are safe to import from API layers without pulling in the
realtime or synthesis clients.
"""

from __future__ import annotations


class BridgeError(Exception):
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TransportUnavailable(BridgeError):
    default_detail = "Telephony transport is not open."


class MalformedMessage(BridgeError):
    default_detail = "Inbound transport message could not be parsed."


class UpstreamError(BridgeError):
    default_detail = "Upstream collaborator failed."


class UpstreamTimeout(UpstreamError):
    default_detail = "Upstream collaborator timed out."


class UpstreamProtocolError(UpstreamError):
    default_detail = "Upstream message could not be decoded."


class ConfigurationMissing(BridgeError):
    default_detail = "Required configuration is missing."
