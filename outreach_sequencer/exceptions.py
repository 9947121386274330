"""
Domain exceptions for the outreach sequencer.

The scheduler recovers locally from generation, send and persistence
failures. Definition, filter and duplicate errors surface to API callers.
"""


class SequencerError(Exception):
    """Base class for all sequencer errors."""


class InvalidSequenceDefinition(SequencerError):
    """Malformed step data, rejected when a sequence is created or its steps replaced."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__('; '.join(self.errors) or 'Invalid sequence definition')


class InvalidFilterError(SequencerError):
    """A batch target filter could not be parsed."""


class SequenceNotFoundError(SequencerError):
    def __init__(self, sequence_id):
        self.sequence_id = sequence_id
        super().__init__(f"Sequence {sequence_id} not found")


class ExecutionNotFoundError(SequencerError):
    def __init__(self, execution_id):
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class DuplicateExecutionError(SequencerError):
    """A non-cancelled execution already exists for the (sequence, target) pair."""

    def __init__(self, sequence_id, target_id, existing_id=None):
        self.sequence_id = sequence_id
        self.target_id = target_id
        self.existing_id = existing_id
        super().__init__(f"Target {target_id} already has an execution for sequence {sequence_id}")


class SequenceLockedError(SequencerError):
    """Steps of a sequence referenced by execution records cannot change."""

    def __init__(self, sequence_id, execution_count):
        self.sequence_id = sequence_id
        self.execution_count = execution_count
        super().__init__(
            f"Sequence {sequence_id} is referenced by {execution_count} execution(s); steps are immutable"
        )


class InvalidTransitionError(SequencerError):
    def __init__(self, execution_id, current_status, action):
        self.execution_id = execution_id
        self.current_status = current_status
        self.action = action
        super().__init__(f"Cannot {action} execution {execution_id} in status '{current_status}'")


class PersistenceConflict(SequencerError):
    """The execution record changed between read and conditional write."""

    def __init__(self, execution_id, expected_version):
        self.execution_id = execution_id
        self.expected_version = expected_version
        super().__init__(f"Execution {execution_id} changed since version {expected_version}")


class GenerationError(SequencerError):
    """The message generator failed to produce content."""


class GenerationTimeout(GenerationError):
    """The message generator did not answer within its time budget."""


class SendError(SequencerError):
    """The send channel failed to deliver a message."""
