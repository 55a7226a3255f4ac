"""
Exception hierarchy for the launchpad client

Errors are split by how far they travel:
- account-local (MalformedDataError, DerivationError) are logged and the account is skipped
- cycle-global (TransientNetworkError and subclasses) degrade a refresh to fallback data
- user-initiated writes (InvalidArgumentError, SubmissionError) always reach the caller
"""

from typing import Any, List, Optional


class LaunchpadError(Exception):
    """Base exception for launchpad client operations"""
    pass


class TransientNetworkError(LaunchpadError):
    """Raised when an endpoint is rate-limited or temporarily unreachable"""
    pass


class RateLimitedError(TransientNetworkError):
    """Raised when an endpoint signals a rate limit or a restricted method"""

    def __init__(self, message: str, endpoint: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status


class RetriesExhaustedError(TransientNetworkError):
    """Raised after the retry ceiling was hit across all endpoints"""

    def __init__(
        self,
        message: str = "Max retries exceeded across all RPC endpoints",
        attempts: int = 0,
        last_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class RPCError(LaunchpadError):
    """JSON-RPC error response that is not a rate limit (never retried)"""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data


class MalformedDataError(LaunchpadError):
    """Raised when an account buffer fails length or bound checks"""

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.address = address


class DerivationError(LaunchpadError):
    """Raised when no valid program-derived address exists for the seeds"""
    pass


class InvalidArgumentError(LaunchpadError, ValueError):
    """Raised when an instruction argument is rejected before encoding"""
    pass


class SubmissionError(LaunchpadError):
    """
    Raised when a transaction is rejected by the network or fails simulation

    Carries the program log lines so the caller can surface them verbatim.
    """

    def __init__(
        self,
        message: str,
        logs: Optional[List[str]] = None,
        signature: Optional[str] = None,
        error: Any = None
    ):
        super().__init__(message)
        self.logs = list(logs or [])
        self.signature = signature
        self.error = error

    def to_dict(self) -> dict:
        """Convert error to dictionary"""
        return {
            "message": str(self),
            "signature": self.signature,
            "error": self.error if isinstance(self.error, (str, dict, list, type(None))) else str(self.error),
            "logs": self.logs,
        }


class SigningRejectedError(SubmissionError):
    """Raised when the signing capability declines to sign"""
    pass


class ConfirmationTimeoutError(SubmissionError):
    """Raised when a submitted transaction does not reach the commitment in time"""
    pass
