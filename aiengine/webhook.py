"""
Ingestion of Evolution API webhooks.

Connection and QR events become store transitions; message events go
through the dedup ledger and then the cached reply path.
"""
import logging
from typing import Any, Optional

from django.db import transaction
from django.utils import timezone
from pydantic import BaseModel

from connections.models import EventSource, InstanceSnapshot, InstanceState
from connections.state_store import InstanceStateStore, TransitionPayload, TransitionResult, instance_state_store

from .events import (
    ConnectionUpdateEvent,
    MessageUpsertEvent,
    QRCodeUpdatedEvent,
    WebhookEvent,
    parse_webhook_payload,
)
from .models import Agent, WebhookData
from .response_cache import ResponseCache, response_cache
from .service import ReplyPipeline

logger = logging.getLogger("aiengine.webhook")


class IngestStatus:
    APPLIED = 'applied'
    UNCHANGED = 'unchanged'
    REJECTED = 'rejected'
    IGNORED = 'ignored'
    UNKNOWN_INSTANCE = 'unknown_instance'
    DUPLICATE = 'duplicate'
    REPLIED = 'replied'
    CACHED = 'cached'
    NO_REPLY = 'no_reply'
    REPLY_FAILED = 'reply_failed'


class IngestResult(BaseModel):
    status: str
    event: Optional[str] = None
    agent_id: Optional[int] = None
    state: Optional[InstanceState] = None
    detail: str = ''

    def as_dict(self) -> dict:
        return {'success': True, **self.model_dump(mode='json')}


class WebhookIngestor:

    def __init__(
        self,
        store: Optional[InstanceStateStore] = None,
        cache: Optional[ResponseCache] = None,
        pipeline: Optional[ReplyPipeline] = None,
    ):
        self.store = store or instance_state_store
        self.cache = cache or response_cache
        self.pipeline = pipeline or ReplyPipeline()

    def ingest(self, payload: Any) -> IngestResult:
        """
        Handle one decoded webhook body.

        Raises InvalidWebhookEvent for malformed events; everything else,
        including unknown instances, comes back as an IngestResult.
        """
        event = parse_webhook_payload(payload)
        if event is None:
            raw_event = payload.get('event') if isinstance(payload, dict) else None
            logger.info(f"Ignoring unsupported webhook event: {raw_event}")
            return IngestResult(status=IngestStatus.IGNORED, event=str(raw_event), detail='Unsupported event type')

        snapshot = self.store.find_by_instance_name(event.instance)
        if snapshot is None:
            logger.warning(f"Webhook {event.event.value} for unknown instance {event.instance}. Skipping...")
            return IngestResult(status=IngestStatus.UNKNOWN_INSTANCE, event=event.event.value, detail=event.instance)

        if isinstance(event, ConnectionUpdateEvent):
            return self._handle_connection_update(event, snapshot)
        if isinstance(event, QRCodeUpdatedEvent):
            return self._handle_qr_code(event, snapshot)
        return self._handle_message(event, snapshot)

    # Connection events

    def _handle_connection_update(self, event: ConnectionUpdateEvent, snapshot: InstanceSnapshot) -> IngestResult:
        target = event.target_state
        if target is None:
            logger.info(f"Instance {event.instance} is pairing ({event.state}); nothing to apply")
            return IngestResult(
                status=IngestStatus.IGNORED,
                event=event.event.value,
                agent_id=snapshot.agent_id,
                state=snapshot.state,
                detail=f'Gateway state {event.state}',
            )

        payload = TransitionPayload(
            error_detail=event.state if target == InstanceState.ERROR else None,
            source=EventSource.WEBHOOK,
        )
        result = self.store.apply_transition(snapshot.agent_id, target, payload)
        return self._transition_result(event, result)

    def _handle_qr_code(self, event: QRCodeUpdatedEvent, snapshot: InstanceSnapshot) -> IngestResult:
        payload = TransitionPayload(qr_code=event.qr_code, source=EventSource.WEBHOOK)
        result = self.store.apply_transition(snapshot.agent_id, InstanceState.AWAITING_QR_SCAN, payload)
        return self._transition_result(event, result)

    @staticmethod
    def _transition_result(event: WebhookEvent, result: TransitionResult) -> IngestResult:
        if result.changed:
            status = IngestStatus.APPLIED
        elif result.accepted:
            status = IngestStatus.UNCHANGED
        else:
            status = IngestStatus.REJECTED
        return IngestResult(
            status=status,
            event=event.event.value,
            agent_id=result.snapshot.agent_id,
            state=result.state,
            detail=f'{result.previous_state} -> {result.state}',
        )

    # Message events

    def _handle_message(self, event: MessageUpsertEvent, snapshot: InstanceSnapshot) -> IngestResult:
        def result(status: str, detail: str = '') -> IngestResult:
            return IngestResult(
                status=status,
                event=event.event.value,
                agent_id=snapshot.agent_id,
                state=snapshot.state,
                detail=detail,
            )

        if event.from_me:
            logger.info(f"Webhook is a message from me: {event.message_id}. Skipping...")
            return result(IngestStatus.IGNORED, 'Message from me')
        if event.is_group:
            logger.info(f"Webhook is a message from a group: {event.message_id}. Skipping...")
            return result(IngestStatus.IGNORED, 'Message from a group')

        webhook_data, created = self._record_message(event, snapshot)
        if not created:
            logger.info(f"Message {event.message_id} already received. Skipping...")
            return result(IngestStatus.DUPLICATE, event.message_id)

        agent = Agent.objects.filter(pk=snapshot.agent_id).first()
        if agent is None or not agent.is_active:
            self._finish(webhook_data, processing_error='Agent inactive or missing')
            return result(IngestStatus.NO_REPLY, 'Agent inactive or missing')
        if not event.text:
            self._finish(webhook_data)
            return result(IngestStatus.NO_REPLY, 'Message has no text')

        reply = self.cache.get(agent.id, event.text)
        from_cache = reply is not None
        if from_cache:
            logger.info(f"Serving cached reply for message {event.message_id}")
        else:
            try:
                reply = self.pipeline.generate(agent, event.text)
            except Exception as e:
                logger.error(f"Reply generation failed for message {event.message_id}: {e}", exc_info=True)
                self._finish(webhook_data, processing_error=f'Reply generation failed: {e}')
                return result(IngestStatus.REPLY_FAILED, 'Reply generation failed')
            if not reply:
                self._finish(webhook_data)
                return result(IngestStatus.NO_REPLY, 'Generator returned no text')
            self.cache.put(agent.id, event.text, reply)

        success, failure = self.pipeline.deliver(event.instance, event.remote_jid, reply, reply_to=event.message_id)
        if not success:
            self._finish(webhook_data, response_text=reply, from_cache=from_cache, processing_error=f'Delivery failed: {failure}')
            return result(IngestStatus.REPLY_FAILED, 'Delivery failed')

        self._finish(webhook_data, response_text=reply, from_cache=from_cache)
        return result(IngestStatus.CACHED if from_cache else IngestStatus.REPLIED)

    @staticmethod
    def _record_message(event: MessageUpsertEvent, snapshot: InstanceSnapshot):
        """Claim the message id. Only the caller that created the row may answer it."""
        with transaction.atomic():
            return WebhookData.objects.get_or_create(
                message_id=event.message_id,
                defaults={
                    'agent_id': snapshot.agent_id,
                    'event': event.event.value,
                    'instance': event.instance,
                    'remote_jid': event.remote_jid,
                    'push_name': event.push_name,
                    'conversation': event.text,
                    'message_type': event.message_type,
                    'date_time': event.date_time,
                    'received_at': timezone.now(),
                },
            )

    @staticmethod
    def _finish(webhook_data: WebhookData, response_text: Optional[str] = None, from_cache: bool = False, processing_error: Optional[str] = None) -> None:
        webhook_data.response_text = response_text
        webhook_data.served_from_cache = from_cache
        webhook_data.processing_error = processing_error
        webhook_data.is_processed = True
        webhook_data.save(update_fields=['response_text', 'served_from_cache', 'processing_error', 'is_processed'])


webhook_ingestor = WebhookIngestor()
