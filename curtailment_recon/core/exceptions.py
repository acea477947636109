"""Exception hierarchy for the reconciliation core.

Connector-level failures live in ``curtailment_recon.connectors.base``.
An empty settlement period is not an exception (see ``SlotOutcome.NO_DATA``)
and a cross-tier mismatch is reported as a ``Discrepancy`` value.
"""

from datetime import date


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""


class MissingParameterError(ReconciliationError):
    """Raised when the network difficulty for a date cannot be resolved.

    Blocks the derived-metric stage for that date only.
    """

    def __init__(self, settlement_date: date, reason: str = "") -> None:
        self.settlement_date = settlement_date
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"No difficulty available for {settlement_date}{detail}")


class UnknownMinerModelError(ReconciliationError):
    """Raised when a miner model is not in the supported model table."""


class PersistenceError(ReconciliationError):
    """Raised when a storage operation fails.

    Fatal for the current scope. All writes are idempotent, so the scope is
    safely retried on the next invocation.
    """


class DateLockedError(ReconciliationError):
    """Raised when a date already has an in-flight orchestration."""

    def __init__(self, settlement_date: date) -> None:
        self.settlement_date = settlement_date
        super().__init__(f"Reconciliation already in progress for {settlement_date}")
