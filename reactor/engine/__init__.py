"""Reactor engine.

`Reactor` owns the bus session and fans every delivery out to the loaded
actions through a bounded worker pool.

Example
-------
>>> from reactor.engine import Reactor, DispatchSettings
"""
from __future__ import annotations

from .main import DispatchSettings, OverflowPolicy, Reactor, ReactorState  # re‑export

__all__ = ["DispatchSettings", "OverflowPolicy", "Reactor", "ReactorState"]
