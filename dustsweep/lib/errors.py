"""
Error taxonomy for scanning and reclaiming, plus user-facing message mapping.

Raw transport errors are never shown to the user verbatim; the helpers at the
bottom of this module translate known failure patterns into guidance.
"""

from typing import Optional


class DustSweepError(Exception):
    """Base class for all dustsweep errors."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailableError(DustSweepError):
    """Holdings enumeration or another read query failed outright."""


class LookupUnknownError(DustSweepError):
    """A best-effort lookup could not produce a value. Never fatal."""


class SubmissionFailedError(DustSweepError):
    """A transaction could not be signed or broadcast."""

    retryable = True


class ConfirmationTimeoutError(DustSweepError):
    """A broadcast transaction did not confirm in time."""

    retryable = True


class UserRejectedError(DustSweepError):
    """The wallet owner refused to sign. Retrying is pointless."""


class PersistenceError(DustSweepError):
    """The run history could not be written."""


# EIP-1193 code used by browser wallets for a user refusal
USER_REJECTED_CODE = 4001

RATE_LIMIT_PATTERNS = ("429", "rate limit", "too many requests", "exceeded")
NETWORK_PATTERNS = (
    "network",
    "fetch",
    "timeout",
    "timed out",
    "econnrefused",
    "socket",
    "connection",
)


def is_user_rejection(error: BaseException) -> bool:
    """Return True if the error represents the wallet owner declining to sign."""
    if isinstance(error, UserRejectedError):
        return True
    if getattr(error, "code", None) == USER_REJECTED_CODE:
        return True
    if getattr(error, "status_code", None) == USER_REJECTED_CODE:
        return True
    return "rejected" in str(error).lower()


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether a failed submit/confirm attempt may be retried.

    User rejections and invalid input (ValueError, TypeError) are final.
    Other taxonomy errors carry their own flag; unknown exceptions from
    signers and RPC nodes are treated as transient.
    """
    if is_user_rejection(error):
        return False
    if isinstance(error, (ValueError, TypeError)):
        return False
    if isinstance(error, DustSweepError):
        return error.retryable or isinstance(error, ProviderUnavailableError)
    return True


def is_rate_limit_error(error: BaseException) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in RATE_LIMIT_PATTERNS)


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in NETWORK_PATTERNS)


def friendly_error_message(error: BaseException) -> str:
    """
    Translate an error into actionable guidance for the user.

    Args:
        error: Any exception raised while scanning or reclaiming

    Returns:
        A short message that never contains raw transport text
    """
    if is_user_rejection(error):
        return "Transaction was rejected by the wallet."
    if isinstance(error, ConfirmationTimeoutError):
        return "Transaction was not confirmed in time. Check the explorer before retrying."
    if is_rate_limit_error(error):
        return "RPC is busy. Please wait a moment and try again."
    if is_network_error(error):
        return "Network connection issue. Please check your internet."
    if "insufficient" in str(error).lower():
        return "Insufficient funds for transaction fees."
    return "An error occurred. Please try again."
