"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class LedgerWriteError(DomainException):
    """Ledger insert failed; nothing was recorded for the call"""

    pass


class SnapshotUpdateError(DomainException):
    """Snapshot could not be resolved or updated (soft-fail side channel)"""

    pass


class InvalidCurrencyError(DomainException):
    """Currency is not one of the supported codes"""

    def __init__(self, currency: str):
        super().__init__(f"Unsupported currency: {currency!r}")
        self.currency = currency


class InvalidQueryError(DomainException):
    """Reporting query parameters are malformed"""

    pass


class NotFoundError(DomainException):
    """Referenced record does not exist"""

    pass
