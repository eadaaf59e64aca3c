class LedgerError(Exception):
    """Base class for ledger failures that callers are expected to handle."""


class ValidationError(LedgerError, ValueError):
    pass


class NotFoundError(LedgerError, ValueError):
    pass


class NetworkFailure(LedgerError, RuntimeError):
    pass


class CacheInconsistency(LedgerError):
    """A cached record references something the taxonomy no longer knows."""
