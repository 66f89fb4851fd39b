"""
Connection Package
"""
from .resolver import ConnectionResolver, ResolvedConnection

__all__ = [
    "ConnectionResolver",
    "ResolvedConnection",
]
