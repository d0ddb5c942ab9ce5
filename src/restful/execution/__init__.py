"""Polling and precheck gates around remote calls."""

from .poller import Pollable
from .precheck import precheck

__all__ = ["Pollable", "precheck"]
