"""Curtailment settlement reconciliation and hierarchical aggregation."""

__version__ = "0.1.0"
