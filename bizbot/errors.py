"""Error taxonomy shared by the generator, compiler, pipelines and engine client."""

from typing import Optional


class BizbotError(Exception):
    """Base class for every error raised inside bizbot."""


class AuthenticationFailure(BizbotError):
    """Webhook token or payload signature did not match."""


class ValidationFailure(BizbotError):
    """Inbound data is missing required fields or has invalid values."""


class ExternalServiceFailure(BizbotError):
    """A collaborator (store, engine, LLM, channel) failed or was unreachable."""


class MalformedUpstreamResponse(ExternalServiceFailure):
    """The LLM answered, but not with a usable JSON object."""


class EngineUnreachableError(ExternalServiceFailure):
    """The workflow engine could not be reached (connection, timeout, gateway)."""


class EngineRejectedError(ExternalServiceFailure):
    """The workflow engine answered and refused the request."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GraphCompilationError(BizbotError):
    """The automation graph could not be compiled for this configuration."""
