"""
Error hierarchy for the FundsCycle SDK

Every error carries a short user-facing message, a stable code, and an
ErrorContext with diagnostic detail that is never needed for correctness.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class ErrorContext:
    """Diagnostic context attached to an error"""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    query: Optional[str] = None
    address: Optional[str] = None
    attempt: Optional[int] = None
    debug_info: Optional[Dict[str, Any]] = None


class FundsCycleError(Exception):
    """Base exception for all SDK errors."""

    code = "FUNDSCYCLE_ERROR"

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logs or API envelopes."""
        return {
            "code": self.code,
            "message": self.message,
            "timestamp": self.context.timestamp.isoformat(),
            "query": self.context.query,
            "address": self.context.address,
        }


class InvalidSeed(FundsCycleError):
    """Derivation input is malformed. Caller bug, never retried."""
    code = "INVALID_SEED"


class InvalidAddress(FundsCycleError):
    """Address is not a 32-byte base58 value."""
    code = "INVALID_ADDRESS"


class DecodeError(FundsCycleError):
    code = "DECODE_ERROR"


class DiscriminatorMismatchError(DecodeError):
    code = "DISCRIMINATOR_MISMATCH"


class SizeMismatchError(DecodeError):
    code = "SIZE_MISMATCH"


class NotFound(FundsCycleError):
    """A valid "absent" result, distinct from a transport failure."""
    code = "NOT_FOUND"


class GatewayError(FundsCycleError):
    """Transport or RPC failure. Retried by the query layer only."""
    code = "GATEWAY_ERROR"


class PreconditionFailed(FundsCycleError):
    """Local validation failed; nothing was sent to the network."""
    code = "PRECONDITION_FAILED"

    def __init__(self, reason: str, context: Optional[ErrorContext] = None):
        super().__init__(reason, context)
        self.reason = reason


class SubmissionError(FundsCycleError):
    """
    The cluster rejected a submitted transaction, or its fate is unknown.

    outcome_unknown is set when the transaction was accepted for broadcast
    but confirmation could not be observed; it may still land.
    """
    code = "SUBMISSION_ERROR"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        signature: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        outcome_unknown: bool = False,
    ):
        super().__init__(message, context)
        self.reason = reason
        self.signature = signature
        self.outcome_unknown = outcome_unknown


class StaleDataError(FundsCycleError):
    """A dependent multi-step query failed part way after retries."""
    code = "STALE_DATA"
