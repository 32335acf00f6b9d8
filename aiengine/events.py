"""
Webhook payloads from the Evolution API, parsed into typed events.

This is the only place in aiengine that reads the gateway's raw field names.
"""
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict

from connections.models import InstanceState
from connections.services import clean_qr_base64, map_gateway_state, validate_instance_name

from .exceptions import InvalidWebhookEvent

logger = logging.getLogger("aiengine.events")

MAX_TEXT_LENGTH = 5000
_TAG_PATTERN = re.compile(r'<[^>]*>')
_UNSAFE_CHARS = re.compile(r'[<>\'"&]')


class WebhookEventType(str, Enum):
    CONNECTION_UPDATE = "CONNECTION_UPDATE"
    QRCODE_UPDATED = "QRCODE_UPDATED"
    MESSAGES_UPSERT = "MESSAGES_UPSERT"


_EVENT_ALIASES = {
    "CONNECTION_UPDATE": WebhookEventType.CONNECTION_UPDATE,
    "QRCODE_UPDATED": WebhookEventType.QRCODE_UPDATED,
    "QR_UPDATED": WebhookEventType.QRCODE_UPDATED,
    "MESSAGES_UPSERT": WebhookEventType.MESSAGES_UPSERT,
}


def normalize_event_type(raw_event: Any) -> Optional[WebhookEventType]:
    """'connection.update', 'CONNECTION_UPDATE' and friends; None when unsupported."""
    if not isinstance(raw_event, str):
        return None
    return _EVENT_ALIASES.get(raw_event.strip().upper().replace('.', '_'))


def sanitize_text(text: Any) -> str:
    if not isinstance(text, str):
        return ''
    text = _TAG_PATTERN.sub('', text)
    text = _UNSAFE_CHARS.sub('', text)
    return text.strip()[:MAX_TEXT_LENGTH]


class WebhookEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: WebhookEventType
    instance: str


class ConnectionUpdateEvent(WebhookEvent):
    state: str
    status_reason: Optional[int] = None

    @property
    def target_state(self) -> Optional[InstanceState]:
        return map_gateway_state(self.state)


class QRCodeUpdatedEvent(WebhookEvent):
    qr_code: str


class MessageUpsertEvent(WebhookEvent):
    message_id: str
    remote_jid: str
    from_me: bool = False
    push_name: str = ''
    text: str = ''
    message_type: str = ''
    date_time: Optional[datetime] = None

    @property
    def is_group(self) -> bool:
        return self.remote_jid.endswith('@g.us')


def _message_text(message: dict) -> str:
    if not isinstance(message, dict):
        return ''
    if message.get('conversation'):
        return message['conversation']
    extended = message.get('extendedTextMessage') or {}
    if extended.get('text'):
        return extended['text']
    image = message.get('imageMessage') or {}
    return image.get('caption', '') or ''


def _message_time(timestamp: Any) -> Optional[datetime]:
    if not timestamp:
        return None
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Ignoring unreadable messageTimestamp: {timestamp!r}")
        return None


def parse_webhook_payload(payload: Any) -> Optional[Union[ConnectionUpdateEvent, QRCodeUpdatedEvent, MessageUpsertEvent]]:
    """
    Turn a decoded webhook body into an event.

    Returns None for event types this service does not handle.
    Raises InvalidWebhookEvent when a handled event is malformed.
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookEvent('invalid_payload', 'Webhook body must be a JSON object')

    raw_event = payload.get('event')
    if not raw_event:
        raise InvalidWebhookEvent('missing_event', 'Missing event type')
    event_type = normalize_event_type(raw_event)
    if event_type is None:
        return None

    instance = payload.get('instance')
    if isinstance(instance, dict):
        instance = instance.get('instanceName')
    if not isinstance(instance, str) or not validate_instance_name(instance):
        raise InvalidWebhookEvent('invalid_instance', f'Invalid or missing instance name: {instance!r}')

    data = payload.get('data')
    if not isinstance(data, dict):
        raise InvalidWebhookEvent('missing_data', f'{event_type.value} event without a data object')

    if event_type == WebhookEventType.CONNECTION_UPDATE:
        state = data.get('state') or data.get('connection')
        if not isinstance(state, str) or not state.strip():
            raise InvalidWebhookEvent('missing_state', 'CONNECTION_UPDATE without a state')
        status_reason = data.get('statusReason')
        return ConnectionUpdateEvent(
            event=event_type,
            instance=instance,
            state=state.strip(),
            status_reason=status_reason if isinstance(status_reason, int) else None,
        )

    if event_type == WebhookEventType.QRCODE_UPDATED:
        qrcode = data.get('qrcode') if isinstance(data.get('qrcode'), dict) else data
        base64_data = qrcode.get('base64')
        if not isinstance(base64_data, str) or not base64_data:
            raise InvalidWebhookEvent('missing_qr_code', 'QRCODE_UPDATED without a QR image')
        return QRCodeUpdatedEvent(event=event_type, instance=instance, qr_code=clean_qr_base64(base64_data))

    key = data.get('key') or {}
    message_id = key.get('id') or data.get('id')
    remote_jid = key.get('remoteJid')
    if not message_id or not isinstance(message_id, str):
        raise InvalidWebhookEvent('missing_message_id', 'MESSAGES_UPSERT without a message id')
    if not remote_jid or not isinstance(remote_jid, str):
        raise InvalidWebhookEvent('missing_remote_jid', 'MESSAGES_UPSERT without a sender')

    return MessageUpsertEvent(
        event=event_type,
        instance=instance,
        message_id=message_id,
        remote_jid=remote_jid,
        from_me=bool(key.get('fromMe', False)),
        push_name=sanitize_text(data.get('pushName', ''))[:255],
        text=sanitize_text(_message_text(data.get('message') or {})),
        message_type=data.get('messageType', '') or '',
        date_time=_message_time(data.get('messageTimestamp')),
    )
