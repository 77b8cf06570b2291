"""
autoledger - Typed failures

Every failure the engine reports to a caller is a LedgerError subclass with a
stable `code` and the HTTP status the API layer answers with. Validation
failures are raised before any mutation; the surrounding transaction is
rolled back by Database.transaction().
"""


class LedgerError(Exception):
    """Base class for all engine failures."""

    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        return {
            "success": False,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(LedgerError):
    """Account, plan, transaction or reminder absent or owned by another user."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"


class InsufficientBalance(LedgerError):
    code = "INSUFFICIENT_BALANCE"


class InsufficientShares(InsufficientBalance):
    code = "INSUFFICIENT_SHARES"


class InvalidAccountRole(LedgerError):
    """Account type cannot play the requested part in an operation."""

    code = "INVALID_ACCOUNT_ROLE"


class MissingNetValue(InvalidAccountRole):
    code = "MISSING_NET_VALUE"


class InvalidFrequencyConfig(LedgerError):
    code = "INVALID_FREQUENCY_CONFIG"


class InvalidPlanState(LedgerError):
    """Lifecycle transition not allowed from the plan's current status."""

    code = "INVALID_PLAN_STATE"
    status_code = 409


class InvalidTransactionType(LedgerError):
    code = "INVALID_TRANSACTION_TYPE"


class NoAdjustmentNeeded(LedgerError):
    code = "NO_ADJUSTMENT_NEEDED"


class AlreadyFullyRefunded(LedgerError):
    code = "ALREADY_FULLY_REFUNDED"


class RefundExceedsRefundable(LedgerError):
    code = "REFUND_EXCEEDS_REFUNDABLE"
