"""
Custom Exception Classes for the Token Sale System

This module defines the exception classes raised by the sale state machine, the
vesting engine, the ledgers and the liquidity bridge. Errors are grouped under a
few category base classes so callers can react to a whole family at once.

Exception Categories:
- Temporal Violations: the call arrived outside its time window
- State Violations: the call is not valid in the current lifecycle state
- Transfer Failures: a downstream token, currency or pool transfer failed
- Liquidity Bridge Errors: the external pool service rejected a request
- Configuration Errors: bad settings

Every error rejects the call it was raised from. The sale and the vesting
engine run their operations atomically, so a raised error always leaves the
bookkeeping as if the call never happened. Nothing is retried automatically;
callers reissue the call if they want to retry.
"""


class TemporalViolationError(Exception):
    """Base class for calls made outside their allowed time window."""


class SaleNotStartedError(TemporalViolationError):
    """Raised when buying before the sale start time."""


class SaleEndedError(TemporalViolationError):
    """Raised when buying after the sale end time."""


class SaleNotEndedError(TemporalViolationError):
    """Raised when closing the sale before the end time with the hard cap not reached."""


class LiquidityStillLockedError(TemporalViolationError):
    """Raised when unlocking liquidity before the unlock time."""


class StateViolationError(Exception):
    """Base class for calls that are not valid in the current lifecycle state."""


class SaleAlreadyClosedError(StateViolationError):
    """Raised when the sale has already been closed."""


class SaleNotClosedError(StateViolationError):
    """Raised when claiming or airdropping while the sale is still open."""


class AlreadyInitializedError(StateViolationError):
    """Raised when the fixed-allocation vesting is initialized a second time."""


class NothingToClaimError(StateViolationError):
    """Raised when an address with no contribution claims."""


class NoLiquidityLockedError(StateViolationError):
    """Raised when unlocking liquidity that was never locked."""


class LiquidityAlreadyUnlockedError(StateViolationError):
    """Raised when the locked liquidity has already been swept to the project."""


class InvalidScheduleError(StateViolationError):
    """Raised when a vesting schedule id is unknown for the given beneficiary."""


class InsufficientEscrowError(StateViolationError):
    """Raised when the vesting engine custody does not cover a new schedule."""


class TransferFailedError(Exception):
    """Raised if a token, currency or pool-share transfer fails."""


class InsufficientBalanceError(TransferFailedError):
    """Raised when the sender balance does not cover the transfer."""


class InsufficientAllowanceError(TransferFailedError):
    """Raised when a delegated transfer exceeds the approved allowance."""


class RefundFailedError(TransferFailedError):
    """Raised when a currency refund to a contributor fails."""


class LiquidityBridgeError(Exception):
    """Raised when the liquidity bridge fails to create a pool or accept liquidity."""


class SlippageError(LiquidityBridgeError):
    """Raised when the liquidity received is below the requested minimum."""


class InvalidAmountError(Exception):
    """Raised for zero, negative or unconvertible amounts."""


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""
