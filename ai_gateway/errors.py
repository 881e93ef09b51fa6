"""
Error types for the AI gateway.
"""


class GatewayError(Exception):
    """Base exception for gateway errors."""
    pass


class ConfigurationError(GatewayError):
    """Unknown provider or model, or an invalid configuration value."""
    pass


class NotFoundError(ConfigurationError):
    """Requested provider type / provider combination is not configured."""
    pass


class PricingError(GatewayError, ValueError):
    """Invalid input to a pricing calculation."""
    pass


class UpstreamError(GatewayError):
    """Exception raised when a provider API call fails."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class GatewayTimeoutError(UpstreamError, TimeoutError):
    """An upstream or sink call exceeded its deadline."""

    def __init__(self, provider: str, timeout: float, operation: str = "request"):
        self.timeout = timeout
        self.operation = operation
        super().__init__(provider, f"{operation} timed out after {timeout:g}s")


class UsageEmissionError(GatewayError):
    """The usage sink failed. Logged and swallowed, never raised to callers."""

    def __init__(self, message: str, record=None):
        self.record = record
        super().__init__(message)


class ProviderNotImplementedError(GatewayError, NotImplementedError):
    """A declared provider variant has no integration yet."""

    def __init__(self, modality: str, provider: str):
        self.modality = modality
        self.provider = provider
        super().__init__(
            f"{modality} provider '{provider}' is declared but not implemented; "
            f"no {provider} integration is available"
        )


class StreamStateError(GatewayError):
    """An SSE writer operation was attempted in the wrong state."""
    pass


class ValidationError(GatewayError, ValueError):
    """Exception raised when request validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")
