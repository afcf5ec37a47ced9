"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class SettlementValidationError(DomainException):
    """Run parameters or input data are missing or invalid"""

    pass


class NotFoundError(DomainException):
    """Referenced record does not exist"""

    pass


class SettlementNotFoundError(NotFoundError):
    pass


class BusinessNotFoundError(NotFoundError):
    pass


class TransactionNotFoundError(NotFoundError):
    pass


class FundingWalletNotFoundError(NotFoundError):
    """Treasury wallet is not provisioned"""

    pass


class SettlementPreconditionError(DomainException):
    """Run rejected because of the current settlement or wallet state"""

    pass


class SettlementRunningError(SettlementPreconditionError):
    pass


class SettlementCompletedError(SettlementPreconditionError):
    pass


class InsufficientFundingError(SettlementPreconditionError):
    """Funding wallet cannot cover the amount to be paid out"""

    pass


class NothingToSettleError(SettlementPreconditionError):
    """No business is due, or the amount due is zero"""

    pass


class BusinessAlreadySettledError(SettlementPreconditionError):
    pass


class UnreconciledPayoutError(SettlementPreconditionError):
    """A payout to the business went out but was never recorded as settled"""

    pass


class PayoutGatewayError(DomainException):
    """Payout provider returned an error or is unavailable"""

    pass


class BankResolutionError(PayoutGatewayError):
    """Destination bank account could not be resolved"""

    pass


class PersistenceError(DomainException):
    """A settlement write could not be committed"""

    pass
