"""Bottom-up recomputation of the daily, monthly and yearly tiers."""

from .engine import AggregationEngine, CascadeResult

__all__ = ["AggregationEngine", "CascadeResult"]
