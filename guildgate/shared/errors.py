class GatewayError(Exception):
    """Base class for every error raised by guildgate."""


class FrameDecodeError(GatewayError):
    """An inbound frame is not a valid gateway envelope."""


class HandlerError(GatewayError):
    """Raised by an event handler to report a failure without tearing down the connection."""


class FatalGatewayError(GatewayError):
    """The gateway refused the credential for good; reconnecting is pointless."""

    def __init__(self, reason: str, code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code
