"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class LedgerError(DomainException):
    """Base for errors raised by installment ledger operations"""

    pass


class NotFoundError(LedgerError):
    """Referenced sale, installment, transaction or notification is absent"""

    pass


class InvalidAmountError(LedgerError):
    """Amount is non-positive or exceeds what the installment still owes"""

    pass


class LedgerInconsistencyError(LedgerError):
    """Operation would leave a negative paid amount or balance; prior state is corrupt"""

    pass


class InvalidPaymentMethodError(LedgerError):
    """Payment method is not one the store accepts"""

    pass


class InstallmentCancelledError(LedgerError):
    """Installment was cancelled and no longer accepts money movements"""

    pass


class DuplicateNotificationError(DomainException):
    """An active notification with the same message key already exists"""

    pass


class StoreUnavailableError(DomainException):
    """Database connection or transaction failed"""

    pass
