"""
Origin allow-listing and CORS header construction.
"""

from .origin_gate import OriginGate, OriginGateMiddleware

__all__ = ["OriginGate", "OriginGateMiddleware"]
