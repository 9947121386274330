"""
Sequence definition management.

This module contains functionality for:
- Creating and updating sequence definitions behind boundary validation
- Rejecting step changes once execution records reference a sequence
- Drafting sequences with the LLM
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from outreach_sequencer.exceptions import (
    GenerationError, InvalidSequenceDefinition, SequenceLockedError, SequenceNotFoundError
)
from outreach_sequencer.extensions import db
from outreach_sequencer.models import Sequence
from outreach_sequencer.services.sequence_engine.validation import coerce_draft_steps, normalize_steps
from outreach_sequencer.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DRAFT_STEP_COUNT = 5

DRAFT_SYSTEM_PROMPT = (
    "You design B2B outreach email sequences. Respond with a JSON object of the form "
    "{\"steps\": [{\"messageType\", \"tone\", \"delayDays\", \"template\"}]}. "
    "Templates may use the placeholders {{first_name}}, {{last_name}}, {{full_name}} and {{company_name}}."
)

METADATA_FIELDS = ('name', 'description', 'target_audience', 'is_active')


class SequenceService:
    """Create, read and update sequence definitions."""

    def __init__(self, store):
        self.store = store

    def list_sequences(self, active: Optional[bool] = None) -> List[Sequence]:
        query = Sequence.query
        if active is not None:
            query = query.filter_by(is_active=active)
        return query.order_by(Sequence.created_at.desc()).all()

    def get_or_fail(self, sequence_id: str) -> Sequence:
        sequence = db.session.get(Sequence, sequence_id)
        if sequence is None:
            raise SequenceNotFoundError(sequence_id)
        return sequence

    def create_sequence(self, data: Dict[str, Any]) -> Tuple[Sequence, List[str]]:
        name = (data.get('name') or '').strip()
        if not name:
            raise InvalidSequenceDefinition("name is required")

        steps, warnings = normalize_steps(data.get('steps'))
        sequence = Sequence(
            name=name,
            description=data.get('description'),
            target_audience=data.get('target_audience'),
            steps_json=steps,
            is_active=bool(data.get('is_active', False)),
        )
        db.session.add(sequence)
        db.session.commit()

        logger.info(f"Created sequence {sequence.id} '{sequence.name}' with {len(steps)} steps")
        return sequence, warnings

    def update_sequence(self, sequence_id: str, data: Dict[str, Any]) -> Tuple[Sequence, List[str]]:
        sequence = self.get_or_fail(sequence_id)
        warnings: List[str] = []

        if 'steps' in data:
            references = self.store.count_references(sequence.id)
            if references:
                raise SequenceLockedError(sequence.id, references)
            steps, warnings = normalize_steps(data['steps'])
            sequence.steps_json = steps

        if 'name' in data:
            name = (data.get('name') or '').strip()
            if not name:
                raise InvalidSequenceDefinition("name cannot be empty")
            sequence.name = name
        for field in METADATA_FIELDS[1:]:
            if field in data:
                setattr(sequence, field, bool(data[field]) if field == 'is_active' else data[field])

        sequence.updated_at = utcnow()
        db.session.commit()
        logger.info(f"Updated sequence {sequence.id}")
        return sequence, warnings

    def set_active(self, sequence_id: str, active: bool) -> Sequence:
        sequence = self.get_or_fail(sequence_id)
        sequence.is_active = active
        sequence.updated_at = utcnow()
        db.session.commit()
        return sequence


class SequenceDraftService:
    """Drafts a five-step sequence from a plain-language description."""

    def __init__(self, llm=None):
        self.llm = llm

    def draft(self, description: str, name: Optional[str] = None) -> Dict[str, Any]:
        if not description or not description.strip():
            raise InvalidSequenceDefinition("description is required")
        if self.llm is None:
            raise GenerationError("AI drafting requires OPENAI_API_KEY to be configured")

        prompt = (
            f"Create a {DRAFT_STEP_COUNT}-email outreach sequence based on this description: \"{description.strip()}\"\n\n"
            "The sequence should:\n"
            "1. Start with an initial introduction or value proposition\n"
            "2. Follow up with more detailed benefits or case studies\n"
            "3. Address common objections\n"
            "4. Provide social proof or testimonials\n"
            "5. End with a final call to action\n\n"
            "For each email give messageType (initial, followup, proposal, check_in, milestone, urgent), "
            "tone (formal, casual, friendly, urgent), delayDays from the previous email and a template."
        )
        data = self.llm.complete_json(DRAFT_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=1500)

        raw_steps = data.get('steps')
        if not isinstance(raw_steps, list) or not raw_steps:
            raise GenerationError("Draft response did not contain a list of steps")

        steps, warnings = coerce_draft_steps(raw_steps)
        logger.info(f"Drafted sequence with {len(steps)} steps")
        return {
            'name': name or description.strip()[:80],
            'description': description.strip(),
            'steps': steps,
            'warnings': warnings,
        }
