# Import db from extensions to use the same instance
from outreach_sequencer.extensions import db

# Import all models to ensure they are registered with SQLAlchemy
from outreach_sequencer.models.sequence import Sequence, SequenceStep, StepConditions, MESSAGE_TYPES, TONES
from outreach_sequencer.models.prospect import Prospect
from outreach_sequencer.models.execution import SequenceExecution, EXECUTION_STATUSES
from outreach_sequencer.models.delivery_attempt import DeliveryAttempt
from outreach_sequencer.models.engagement_event import EngagementEvent, ENGAGEMENT_EVENT_TYPES

__all__ = [
    'db', 'Sequence', 'SequenceStep', 'StepConditions', 'MESSAGE_TYPES', 'TONES',
    'Prospect', 'SequenceExecution', 'EXECUTION_STATUSES', 'DeliveryAttempt',
    'EngagementEvent', 'ENGAGEMENT_EVENT_TYPES'
]
