"""
Exceptions raised by the compliance engine.
"""


class ContractRAGError(Exception):
    """Base exception for compliance engine errors."""

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class ConfigurationError(ContractRAGError, ValueError):
    """Raised for invalid settings: chunk geometry, vector dimensions, weights.

    Fatal and never retried.
    """

    def __init__(self, message: str):
        super().__init__(message, code="configuration")


class EmbeddingUnavailable(ContractRAGError):
    """Raised when the embedding provider keeps failing after all retries."""

    def __init__(self, message: str = "Embedding provider unavailable"):
        super().__init__(message, code="embedding_unavailable")


class ModelUnavailable(ContractRAGError):
    """Raised when the generative model keeps failing after all retries."""

    def __init__(self, message: str = "Generative model unavailable"):
        super().__init__(message, code="model_unavailable")


class StoreUnavailable(ContractRAGError):
    """Raised when the knowledge store cannot be reached."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Knowledge store '{operation}' failed: {message}", code="store_unavailable")


class MalformedModelResponse(ContractRAGError):
    """Raised when model output cannot be parsed into violations."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message, code="malformed_model_response")
