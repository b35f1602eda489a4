"""Custom exception hierarchy."""


class ContractAIError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class APIClientError(ContractAIError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class MalformedOutputError(ContractAIError):
    """Raised when model output contains no recoverable JSON."""
    pass


class SchemaViolationError(ContractAIError):
    """Raised when parsed JSON is missing mandatory keys or has the wrong shape."""
    pass


class ConfigurationError(ContractAIError):
    """Raised when configuration is invalid or missing."""
    pass


class StorageError(ContractAIError):
    """Raised when a blob storage operation fails."""
    pass


class PipelineError(ContractAIError):
    """Base exception for pipeline errors."""
    pass


class ClassificationError(PipelineError):
    """Stage 1: no classification batch produced usable output."""
    pass


class ExtractionError(PipelineError):
    """Stage 3: per-page extraction (or its second turn) failed."""
    pass
