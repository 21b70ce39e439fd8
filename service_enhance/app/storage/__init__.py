"""
Counter storage backends shared by the gateway actors.
"""

from .counter_store import CounterStore, MemoryCounterStore, RedisCounterStore, create_counter_store

__all__ = [
    "CounterStore",
    "MemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
