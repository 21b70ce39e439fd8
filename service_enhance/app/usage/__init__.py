"""
Usage accounting: per-subject call and token counters.
"""

from .aggregator import UsageAggregator, UsageAggregatorActor, UsageRecorder

__all__ = ["UsageAggregator", "UsageAggregatorActor", "UsageRecorder"]
