"""
Sequence routes package.

This package contains organized sequence functionality:
- crud.py: Basic CRUD operations for sequences
- management.py: Executing, pausing and resuming sequences
- validation.py: Sequence validation, examples and AI drafts
"""

from flask import Blueprint

# Create the main sequence blueprint
sequence_bp = Blueprint('sequence', __name__)

# Import all route modules to register them
from . import crud
from . import management
from . import validation

# Export the blueprint
__all__ = ['sequence_bp']
