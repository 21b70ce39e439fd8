"""
Actor runtime: per-key mailboxes with strictly serial execution.
"""

from .runtime import Actor, ActorRegistry

__all__ = ["Actor", "ActorRegistry"]
