"""
Scheduler services package.

This package contains the periodic driver of the sequence engine:
- core.py: SequenceScheduler, tick processing and the background thread
"""

from .core import SequenceScheduler

__all__ = ['SequenceScheduler']
