"""Error hierarchy for provider calls.

Dispatch policy by kind:
- CredentialMissingError: never retried on the same model
- UpstreamError / ProviderTransportError: retried, then next candidate
- StreamDecodeError: swallowed by the decoder, stream continues
- StreamCancelledError: never retried
- AllProvidersExhaustedError: terminal
"""

from typing import Optional


class ProviderError(RuntimeError):
    """Base class for failures talking to a model provider."""

    def __init__(self, message: str, provider: str = "", model_id: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model_id = model_id


class CredentialMissingError(ProviderError):
    """No secret is available for the resolved provider."""


class UpstreamError(ProviderError):
    """The provider answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        provider: str = "",
        model_id: str = "",
    ):
        super().__init__(message, provider=provider, model_id=model_id)
        self.status_code = status_code
        self.body = body


class ProviderTransportError(ProviderError):
    """Network failure, timeout, or unreachable server."""


class StreamDecodeError(ProviderError):
    """A single stream line did not parse as the expected JSON shape."""


class StreamCancelledError(InterruptedError):
    """A streaming call was cancelled by the caller."""


class AllProvidersExhaustedError(ProviderError):
    """Every candidate model failed on every attempt."""

    def __init__(
        self,
        message: str,
        attempts: Optional[list[tuple[str, Exception]]] = None,
    ):
        super().__init__(message)
        self.attempts = attempts or []

    @property
    def last_error(self) -> Optional[Exception]:
        return self.attempts[-1][1] if self.attempts else None
