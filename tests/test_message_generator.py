"""
Unit tests for message generators.

The OpenAI client is mocked; no network calls are made.
"""

import json
from unittest.mock import Mock, patch

import openai
import pytest

from outreach_sequencer.exceptions import GenerationError, GenerationTimeout
from outreach_sequencer.models import SequenceStep
from outreach_sequencer.services.message_generator import (
    OpenAIMessageGenerator, TemplateMessageGenerator, build_message_generator
)
from outreach_sequencer.services.sequence_engine.message_formatter import TargetContext


@pytest.fixture
def step():
    return SequenceStep.from_dict({
        'id': 'intro', 'messageType': 'proposal', 'tone': 'formal',
        'delayDays': 0, 'template': 'Hello {{first_name}}, an idea for {{company_name}}.',
    })


@pytest.fixture
def context():
    return TargetContext(target_id='t1', first_name='Ana', full_name='Ana Lima', company_name='Acme')


def _completion(content):
    response = Mock()
    response.choices = [Mock(message=Mock(content=content))]
    return response


@pytest.fixture
def openai_client():
    with patch('outreach_sequencer.services.message_generator.OpenAI') as mock_openai:
        client = Mock()
        mock_openai.return_value = client
        yield client


class TestTemplateMessageGenerator:

    def test_renders_content_and_subject(self, step, context):
        message = TemplateMessageGenerator().generate(step, context)

        assert message.content == 'Hello Ana, an idea for Acme.'
        assert message.subject == 'A proposal for Acme'

    def test_blank_template_fails(self, context):
        blank = SequenceStep('s', 'followup', 'casual', 1, '   ')

        with pytest.raises(GenerationError):
            TemplateMessageGenerator().generate(blank, context)


class TestOpenAIMessageGenerator:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            OpenAIMessageGenerator(api_key='')

    def test_generate(self, openai_client, step, context):
        openai_client.chat.completions.create.return_value = _completion(
            json.dumps({'subject': 'For Acme', 'body': 'Dear Ana, ...'})
        )
        generator = OpenAIMessageGenerator(api_key='sk-test', model='gpt-test')

        message = generator.generate(step, context)

        assert message.content == 'Dear Ana, ...'
        assert message.subject == 'For Acme'
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs['model'] == 'gpt-test'
        assert 'Tone: formal' in kwargs['messages'][1]['content']
        assert 'Hello Ana' in kwargs['messages'][1]['content']

    def test_missing_body(self, openai_client, step, context):
        openai_client.chat.completions.create.return_value = _completion(json.dumps({'subject': 'x'}))

        with pytest.raises(GenerationError):
            OpenAIMessageGenerator(api_key='sk-test').generate(step, context)

    @pytest.mark.parametrize('content', ['', 'not json', '["a list"]'])
    def test_bad_completion(self, openai_client, content):
        openai_client.chat.completions.create.return_value = _completion(content)

        with pytest.raises(GenerationError):
            OpenAIMessageGenerator(api_key='sk-test').complete_json('system', 'prompt')

    def test_timeout_maps_to_generation_timeout(self, openai_client):
        openai_client.chat.completions.create.side_effect = openai.APITimeoutError(request=Mock())

        with pytest.raises(GenerationTimeout):
            OpenAIMessageGenerator(api_key='sk-test').complete_json('system', 'prompt')

    def test_api_error_maps_to_generation_error(self, openai_client):
        openai_client.chat.completions.create.side_effect = openai.OpenAIError('quota exceeded')

        with pytest.raises(GenerationError) as exc_info:
            OpenAIMessageGenerator(api_key='sk-test').complete_json('system', 'prompt')

        assert not isinstance(exc_info.value, GenerationTimeout)
        assert 'quota exceeded' in str(exc_info.value)


class TestBuildMessageGenerator:

    def test_default_is_template(self):
        assert isinstance(build_message_generator({}), TemplateMessageGenerator)

    def test_openai(self, openai_client):
        generator = build_message_generator({'MESSAGE_GENERATOR': 'openai', 'OPENAI_API_KEY': 'sk-test'})

        assert isinstance(generator, OpenAIMessageGenerator)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_message_generator({'MESSAGE_GENERATOR': 'carrier-pigeon'})
