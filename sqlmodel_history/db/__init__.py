"""Database types and session management."""

from .naive_datetime import NaiveDatetime
from .types import JsonBOrJson

__all__ = [
    "JsonBOrJson",
    "NaiveDatetime",
]
