"""Custom exceptions for Turnkeeper."""


class TurnkeeperError(Exception):
    """Base exception for Turnkeeper."""

    pass


class ConfigurationError(TurnkeeperError):
    """Configuration-related errors."""

    pass


class CheckpointError(TurnkeeperError):
    """Checkpoint store could not be read or parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Checkpoint '{path}': {message}")
        self.path = path


class ProviderError(TurnkeeperError):
    """Completion-assessment provider errors."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class ProviderHttpError(ProviderError):
    """Provider answered with a non-success HTTP status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        message = f"{provider} API returned {status_code}"
        if body:
            message = f"{message}: {body}"
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Provider call exceeded its deadline."""

    def __init__(self, provider: str, timeout_ms: int):
        super().__init__(f"{provider} call timed out after {timeout_ms}ms", provider=provider)
        self.timeout_ms = timeout_ms


class ProviderResponseError(ProviderError):
    """Provider returned a body that could not be decoded."""

    pass


class TransportError(TurnkeeperError):
    """Agent transport errors."""

    pass


class TransportAbortedError(TransportError):
    """Transport was aborted on request; ends the session silently."""

    pass
