"""Adapters — interpreter session bindings.

Public re-exports for convenient access.
"""

from cloudadmin.adapters.base import Invocation, InterpreterSession, SessionFactory, SessionOptions
from cloudadmin.adapters.mock import FakeSession

__all__ = [
    "FakeSession",
    "Invocation",
    "InterpreterSession",
    "SessionFactory",
    "SessionOptions",
]
