"""Error taxonomy for the retrieval pipeline.

Remote failures are raised by the clients and caught by the services, which
turn them into the next fallback. Only indexing concurrency and explicit
misconfiguration reach the host.
"""


class CodeQAError(Exception):
    """Base class for codeqa errors."""


class ConfigurationError(CodeQAError):
    """A remote client was constructed without the credentials it needs."""


class TransientServiceError(CodeQAError):
    """A remote call timed out, was refused, or returned a non-2xx status."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class AuthenticationError(TransientServiceError):
    """The provider rejected the configured credentials."""


class DataError(CodeQAError):
    """A persisted snapshot could not be parsed."""


class IndexingInProgressError(CodeQAError):
    """An indexing pass is already running for this context."""
