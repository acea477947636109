"""Ingestion of curtailment records per settlement period."""

from .coordinator import IngestionCoordinator, IngestionResult, SlotResult

__all__ = ["IngestionCoordinator", "IngestionResult", "SlotResult"]
