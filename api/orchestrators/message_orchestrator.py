"""Message orchestrator for inbound WhatsApp messages.

Runs one inbound message through the pipeline:

    persist -> embed -> retrieve -> history -> generate -> guardrails -> deliver

and guarantees the channel receives exactly one acknowledgment per request.
Short answers are delivered before acknowledging. Long answers get a
"processing" notice, an immediate acknowledgment, and a background task that
regenerates a shorter answer.
"""

from __future__ import annotations

import structlog

from api.orchestrators.acknowledgment import AcknowledgmentTracker, Responder
from api.orchestrators.background import BackgroundTaskRunner
from api.reprocessing import AnswerReprocessor
from api.schemas.pipeline import (
    AnswerGenerator,
    DeliveryDecision,
    Embedder,
    InboundMessage,
    MessageSender,
    MessageStore,
    PipelineContext,
    ReprocessingJob,
    Retriever,
    SafetyFilter,
    decide_delivery,
    is_empty_answer,
)
from libs.common.settings import Settings, get_settings
from libs.memory.conversation_store import mask_sender

logger = structlog.get_logger(__name__)


class MessageOrchestrator:
    """Sequences the pipeline stages and owns the acknowledgment guard."""

    def __init__(
        self,
        store: MessageStore,
        embedder: Embedder,
        retriever: Retriever,
        generator: AnswerGenerator,
        safety_filter: SafetyFilter,
        sender: MessageSender,
        reprocessor: AnswerReprocessor,
        task_runner: BackgroundTaskRunner,
        settings: Settings | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.retriever = retriever
        self.generator = generator
        self.safety_filter = safety_filter
        self.sender = sender
        self.reprocessor = reprocessor
        self.task_runner = task_runner
        self.settings = settings or get_settings()

    async def handle(self, inbound: InboundMessage, responder: Responder) -> None:
        """Process one inbound message.

        Returns once the channel has been acknowledged. For deferred answers
        delivery continues in the background after this returns.
        """
        ack = AcknowledgmentTracker(responder, sender_id=inbound.sender_id)
        log = logger.bind(sender=mask_sender(inbound.sender_id))
        log.info("Received WhatsApp message", text_length=len(inbound.text))

        try:
            await self._run_pipeline(inbound, PipelineContext(), ack, log)
        except Exception as e:
            await self._handle_failure(inbound, ack, e, log)

    async def _run_pipeline(self, inbound: InboundMessage, context: PipelineContext, ack: AcknowledgmentTracker, log) -> None:
        await self.store.store_message(inbound.sender_id, inbound.text, "user")
        log.info("Stored user message")

        embedding = await self.embedder.embed(inbound.text)
        if not embedding:
            log.warning("No embedding produced, stopping")
            await ack.acknowledge("no_embedding")
            return

        context.retrieved_context = await self.retriever.retrieve(embedding)
        log.info("Retrieved relevant documents", count=len(context.retrieved_context))

        context.conversation_history = await self.store.fetch_history(inbound.sender_id)
        log.info("Fetched conversation history", turns=len(context.conversation_history))

        context.raw_answer = await self.generator.generate(
            inbound.text, context.retrieved_context, context.conversation_history
        )
        log.info("Generated initial answer", length=len(context.raw_answer or ""))

        if is_empty_answer(context.raw_answer):
            log.error("Model did not return a valid answer")
            await self.sender.deliver(inbound.sender_id, self.settings.no_answer_text)
            await ack.acknowledge("empty_answer")
            return

        context.filtered_answer = self.safety_filter.filter(context.raw_answer, inbound.text)
        log.info("Applied guardrails", length=len(context.filtered_answer))

        if is_empty_answer(context.filtered_answer):
            log.error("Guardrails left nothing to deliver")
            await self.sender.deliver(inbound.sender_id, self.settings.no_answer_text)
            await ack.acknowledge("empty_filtered_answer")
            return

        decision = decide_delivery(context.filtered_answer, self.settings.long_answer_threshold)
        if decision is DeliveryDecision.DEFERRED:
            await self._deliver_deferred(inbound, context, ack, log)
            return

        await self.store.store_message(inbound.sender_id, context.filtered_answer, "bot")
        await self.sender.deliver(inbound.sender_id, context.filtered_answer)
        log.info("Answer delivered", length=len(context.filtered_answer))
        await ack.acknowledge("delivered")

    async def _deliver_deferred(self, inbound: InboundMessage, context: PipelineContext, ack: AcknowledgmentTracker, log) -> None:
        log.info(
            "Answer too long, deferring to background reprocessing",
            length=len(context.filtered_answer),
            threshold=self.settings.long_answer_threshold,
        )

        try:
            await self.sender.deliver(inbound.sender_id, self.settings.processing_notice_text)
            log.info("Sent processing notice")
        except Exception as e:
            log.error("Failed to send processing notice", error=str(e))

        await ack.acknowledge("deferred")

        try:
            job = ReprocessingJob.from_context(inbound, context)
            self.task_runner.spawn(
                self.reprocessor.reprocess(job),
                name="reprocess_long_answer",
                sender=mask_sender(inbound.sender_id),
            )
        except Exception as e:
            log.error("Failed to launch answer reprocessing", error=str(e), exc_info=True)

    async def _handle_failure(self, inbound: InboundMessage, ack: AcknowledgmentTracker, error: Exception, log) -> None:
        log.error(
            "Error processing WhatsApp message",
            error=str(error),
            error_type=type(error).__name__,
            exc_info=error,
        )

        if ack.acknowledged:
            log.error("Error occurred after the channel was acknowledged, no further response sent")
            return

        try:
            await self.sender.deliver(inbound.sender_id, self.settings.generic_error_text)
            log.info("Sent generic error message")
        except Exception as send_error:
            log.error("Failed to send generic error message", error=str(send_error))
        finally:
            if not ack.acknowledged:
                await ack.acknowledge("failure")
