class LedgerError(Exception):
    """Base exception for settlement ledger errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class LedgerAuthError(LedgerError):
    """Manager credential missing or rejected."""

    pass


class LedgerRejectedError(LedgerError):
    """Ledger refused the write. Not retried."""

    pass


class LedgerUnavailableError(LedgerError):
    """Transient failures persisted past the retry budget."""

    pass
