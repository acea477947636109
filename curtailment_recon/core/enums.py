"""Shared enumerations used across the reconciliation core.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class ReconcileState(str, Enum):
    """States of the per-date reconciliation state machine."""

    PENDING = "PENDING"
    VALIDATING = "VALIDATING"
    BACKFILLING = "BACKFILLING"
    RECOMPUTING_DERIVED = "RECOMPUTING_DERIVED"
    RECOMPUTING_AGGREGATES = "RECOMPUTING_AGGREGATES"
    AUDITING = "AUDITING"
    DONE = "DONE"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"

    @property
    def is_terminal(self) -> bool:
        return self in (ReconcileState.DONE, ReconcileState.PARTIAL_FAILURE)


class ReconcileAction(str, Enum):
    """Operator-selectable reconciliation actions."""

    VALIDATE = "validate"
    BACKFILL = "backfill"
    RECOMPUTE = "recompute"
    AUDIT = "audit"
    FULL_RECONCILE = "full-reconcile"


class SlotOutcome(str, Enum):
    """Result of fetching a single settlement period from the upstream source.

    NO_DATA is a legitimate empty period, not an error.
    """

    INGESTED = "INGESTED"
    NO_DATA = "NO_DATA"
    FAILED = "FAILED"


class Tier(str, Enum):
    """Aggregate tier levels."""

    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Measure(str, Enum):
    """Measures compared by the consistency auditor."""

    VOLUME = "total_volume"
    PAYMENT = "total_payment"
    BITCOIN = "bitcoin_mined"
