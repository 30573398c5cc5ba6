from __future__ import annotations

from typing import Optional


class LedgerError(ValueError):
    pass


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class ExternalStoreError(LedgerError):
    """The record store failed to complete a read or write."""


class PartialBatchFailure(LedgerError):
    """Raised when some ids of a multi-record operation failed.

    ``succeeded`` lists ids that were mutated (or, for imports, records that
    were created) before or despite the failures; ``failed`` maps each failed
    id or draft key to a human-readable reason.
    """

    def __init__(
        self,
        message: str,
        succeeded: Optional[list] = None,
        failed: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.succeeded = list(succeeded or [])
        self.failed = dict(failed or {})
