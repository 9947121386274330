"""
Global Error Handlers for Flask Application

This module maps HTTP errors, database errors and the sequencer's domain
exceptions to standardized error responses.
"""

import logging
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from outreach_sequencer.extensions import db
from outreach_sequencer.exceptions import (
    DuplicateExecutionError,
    ExecutionNotFoundError,
    GenerationError,
    InvalidFilterError,
    InvalidSequenceDefinition,
    InvalidTransitionError,
    PersistenceConflict,
    SendError,
    SequenceLockedError,
    SequenceNotFoundError,
)
from .error_handling import (
    create_error_response,
    handle_exception,
    handle_external_api_error,
    handle_not_found_error,
    handle_validation_error,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register global error handlers for the Flask application."""

    @app.errorhandler(404)
    def not_found_error(error):
        """Handle 404 Not Found errors."""
        return handle_not_found_error("Resource")

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        """Handle 405 Method Not Allowed errors."""
        allowed = ', '.join(sorted(error.valid_methods)) if getattr(error, 'valid_methods', None) else 'GET'
        return create_error_response('BAD_REQUEST', f"Method not allowed; use {allowed}", status_code=405)

    @app.errorhandler(400)
    def bad_request_error(error):
        """Handle 400 Bad Request errors."""
        return handle_validation_error("Invalid request data")

    @app.errorhandler(401)
    def unauthorized_error(error):
        return create_error_response('UNAUTHORIZED', "Authentication required", status_code=401)

    @app.errorhandler(InvalidSequenceDefinition)
    def invalid_sequence_error(error):
        return create_error_response('INVALID_SEQUENCE', "Invalid sequence definition", {'errors': error.errors})

    @app.errorhandler(InvalidFilterError)
    def invalid_filter_error(error):
        return create_error_response('INVALID_FILTER', str(error))

    @app.errorhandler(SequenceNotFoundError)
    def sequence_not_found_error(error):
        return handle_not_found_error("Sequence", error.sequence_id)

    @app.errorhandler(ExecutionNotFoundError)
    def execution_not_found_error(error):
        return handle_not_found_error("Execution", error.execution_id)

    @app.errorhandler(DuplicateExecutionError)
    def duplicate_execution_error(error):
        return create_error_response('DUPLICATE_EXECUTION', str(error), {
            'sequence_id': error.sequence_id,
            'target_id': error.target_id,
            'existing_execution_id': error.existing_id,
        })

    @app.errorhandler(SequenceLockedError)
    def sequence_locked_error(error):
        return create_error_response('SEQUENCE_LOCKED', str(error), {'execution_count': error.execution_count})

    @app.errorhandler(InvalidTransitionError)
    def invalid_transition_error(error):
        return create_error_response('INVALID_TRANSITION', str(error), {
            'current_status': error.current_status,
            'action': error.action,
        })

    @app.errorhandler(PersistenceConflict)
    def persistence_conflict_error(error):
        return create_error_response('PERSISTENCE_CONFLICT', "The record changed concurrently; retry the request")

    @app.errorhandler(GenerationError)
    def generation_error(error):
        return handle_external_api_error(error, "message generator")

    @app.errorhandler(SendError)
    def send_error(error):
        return handle_external_api_error(error, "send channel")

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        """Handle SQLAlchemy database errors."""
        db.session.rollback()
        return handle_exception(error, "database operation")

    @app.errorhandler(HTTPException)
    def http_error(error):
        """Handle HTTP exceptions."""
        return create_error_response(
            'BAD_REQUEST',
            error.description or "HTTP error occurred",
            status_code=error.code
        )

    @app.errorhandler(Exception)
    def generic_error(error):
        """Handle all other unhandled exceptions."""
        return handle_exception(error, "request processing")
