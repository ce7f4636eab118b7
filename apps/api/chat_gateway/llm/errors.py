class GatewayError(Exception):
    """Base class for failures raised by the completion gateway."""


class InputError(GatewayError):
    """The request is missing something required, e.g. a blank user prompt."""


class UpstreamTransportError(GatewayError):
    """Connect/read/TLS failure or an HTTP error status from the model backend."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamParseError(GatewayError):
    """A single upstream frame could not be parsed. Always recovered locally."""
