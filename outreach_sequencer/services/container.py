"""
Construction and lookup of the sequencer's collaborators.

Everything is built once per application in ``build_services`` and stored
in ``app.extensions['outreach']``.
"""

import atexit
import logging
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from outreach_sequencer.services.batch_orchestrator import BatchOrchestrator
from outreach_sequencer.services.engagement import EngagementSource
from outreach_sequencer.services.execution_store import ExecutionStore
from outreach_sequencer.services.message_generator import (
    MessageGenerator, OpenAIMessageGenerator, build_message_generator
)
from outreach_sequencer.services.notifications import NotificationService
from outreach_sequencer.services.scheduler import SequenceScheduler
from outreach_sequencer.services.send_channel import SendChannel, build_send_channel
from outreach_sequencer.services.sequence_engine import SequenceEngine
from outreach_sequencer.services.sequence_service import SequenceDraftService, SequenceService

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'outreach'


@dataclass
class OutreachServices:
    store: ExecutionStore
    engagement: EngagementSource
    generator: MessageGenerator
    channel: SendChannel
    notifier: NotificationService
    engine: SequenceEngine
    scheduler: SequenceScheduler
    orchestrator: BatchOrchestrator
    sequences: SequenceService
    drafts: SequenceDraftService


def _draft_llm(config, generator: MessageGenerator) -> Optional[OpenAIMessageGenerator]:
    if isinstance(generator, OpenAIMessageGenerator):
        return generator
    if config.get('OPENAI_API_KEY'):
        return OpenAIMessageGenerator(
            api_key=config['OPENAI_API_KEY'],
            model=config.get('OPENAI_MODEL', 'gpt-4o-mini'),
            timeout=config.get('GENERATION_TIMEOUT_SECONDS', 30.0),
        )
    return None


def build_services(app, generator: Optional[MessageGenerator] = None,
                   channel: Optional[SendChannel] = None) -> OutreachServices:
    """Wire the store, adapters, engine, scheduler and orchestrator for ``app``."""
    config = app.config
    store = ExecutionStore()
    engagement = EngagementSource()
    generator = generator or build_message_generator(config)
    channel = channel or build_send_channel(config)
    notifier = NotificationService.from_config(config)

    engine = SequenceEngine.from_config(config, store, generator, channel, engagement, notifier)
    # Generation threads are released when the interpreter exits
    atexit.register(engine.shutdown)
    scheduler = SequenceScheduler(engine, store, app=app)
    services = OutreachServices(
        store=store,
        engagement=engagement,
        generator=generator,
        channel=channel,
        notifier=notifier,
        engine=engine,
        scheduler=scheduler,
        orchestrator=BatchOrchestrator(store, engine),
        sequences=SequenceService(store),
        drafts=SequenceDraftService(_draft_llm(config, generator)),
    )
    app.extensions[EXTENSION_KEY] = services
    logger.info(
        f"Outreach services ready (generator {type(generator).__name__}, channel {type(channel).__name__})"
    )
    return services


def get_services() -> OutreachServices:
    return current_app.extensions[EXTENSION_KEY]
