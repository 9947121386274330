"""
Testing package for Outreach Sequencer.

This package contains:
- Unit tests for individual components
- Integration tests for API endpoints
- Shared fixtures in conftest.py
"""
