"""
Sequence engine services package.

This package contains the outreach step state machine:
- core.py: SequenceEngine and step processing
- conditions.py: step precondition evaluation
- delay_calculator.py: due times, retry backoff and re-check timing
- message_formatter.py: target context and template personalization
- validation.py: sequence definition validation
"""

from .core import SequenceEngine, ProcessResult, EXAMPLE_SEQUENCE

__all__ = ['SequenceEngine', 'ProcessResult', 'EXAMPLE_SEQUENCE']
