"""
Message generation.

Two generators share one interface:
- TemplateMessageGenerator renders the step template directly
- OpenAIMessageGenerator asks an OpenAI chat model to write the message
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

import openai
from openai import OpenAI

from outreach_sequencer.exceptions import GenerationError, GenerationTimeout
from outreach_sequencer.models.sequence import SequenceStep
from outreach_sequencer.services.sequence_engine.message_formatter import TargetContext, render_template

logger = logging.getLogger(__name__)

DEFAULT_SUBJECTS = {
    'initial': 'Quick introduction',
    'followup': 'Following up',
    'proposal': 'A proposal for {{company_name}}',
    'check_in': 'Checking in',
    'milestone': 'An update for {{company_name}}',
    'urgent': 'Time-sensitive: {{company_name}}',
}

TONE_GUIDANCE = {
    'formal': 'Professional and courteous, no slang.',
    'casual': 'Relaxed and conversational.',
    'friendly': 'Warm and personable while staying concise.',
    'urgent': 'Direct and time-sensitive without being pushy.',
}


@dataclass
class GeneratedMessage:
    content: str
    subject: str = ''


class MessageGenerator:
    """Produces message content for one step and one target."""
    name = 'base'

    def generate(self, step: SequenceStep, context: TargetContext) -> GeneratedMessage:
        raise NotImplementedError


class TemplateMessageGenerator(MessageGenerator):
    name = 'template'

    def generate(self, step: SequenceStep, context: TargetContext) -> GeneratedMessage:
        content = render_template(step.template, context)
        if not content.strip():
            raise GenerationError(f"Step {step.id} rendered to an empty message")
        subject = render_template(DEFAULT_SUBJECTS.get(step.message_type, ''), context)
        return GeneratedMessage(content=content, subject=subject)


class OpenAIMessageGenerator(MessageGenerator):
    name = 'openai'

    SYSTEM_PROMPT = (
        "You are an expert business development writer producing short outreach emails.\n"
        "Rules:\n- Keep the message under 150 words.\n- Follow the requested tone.\n"
        "- Use the template as the outline and keep its intent.\n- Do not invent facts about the recipient.\n"
        "- Output strict JSON with keys: subject, body."
    )

    def __init__(self, api_key: str, model: str = 'gpt-4o-mini', timeout: float = 30.0):
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for the OpenAI message generator")
        self.model = model
        self.timeout = timeout
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete_json(self, system: str, prompt: str, temperature: float = 0.7, max_tokens: int = 600) -> Dict[str, Any]:
        """Run one chat completion that must answer with a JSON object."""
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise GenerationTimeout(f"OpenAI request timed out after {self.timeout}s") from e
        except openai.OpenAIError as e:
            raise GenerationError(f"OpenAI request failed: {str(e)}") from e

        text = (resp.choices[0].message.content or '').strip() if resp.choices else ''
        if not text:
            raise GenerationError("OpenAI returned an empty completion")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise GenerationError(f"OpenAI returned invalid JSON: {text[:200]}") from e
        if not isinstance(data, dict):
            raise GenerationError("OpenAI returned JSON that is not an object")
        return data

    def _build_prompt(self, step: SequenceStep, context: TargetContext) -> str:
        outline = render_template(step.template, context)
        return (
            f"Message type: {step.message_type}\n"
            f"Tone: {step.tone} ({TONE_GUIDANCE.get(step.tone, '')})\n"
            f"Recipient: {context.full_name or context.first_name or 'unknown'}\n"
            f"Company: {context.company_name or 'unknown'}\n"
            f"Messages already sent in this sequence: {context.previous_messages}\n"
            f"Engagement score (0-1): {context.engagement_score:.2f}\n"
            f"Template outline:\n{outline}"
        )

    def generate(self, step: SequenceStep, context: TargetContext) -> GeneratedMessage:
        data = self.complete_json(self.SYSTEM_PROMPT, self._build_prompt(step, context))
        body = (data.get('body') or '').strip()
        if not body:
            raise GenerationError("OpenAI response did not include a body")
        subject = (data.get('subject') or '').strip()
        logger.info(f"Generated {step.message_type} message for target {context.target_id} with {self.model}")
        return GeneratedMessage(content=body, subject=subject)


def build_message_generator(config) -> MessageGenerator:
    kind = config.get('MESSAGE_GENERATOR', 'template')
    if kind == 'openai':
        return OpenAIMessageGenerator(
            api_key=config.get('OPENAI_API_KEY'),
            model=config.get('OPENAI_MODEL', 'gpt-4o-mini'),
            timeout=config.get('GENERATION_TIMEOUT_SECONDS', 30.0),
        )
    if kind == 'template':
        return TemplateMessageGenerator()
    raise ValueError(f"Unknown MESSAGE_GENERATOR '{kind}'")
