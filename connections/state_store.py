"""
Authoritative per-agent WhatsApp instance state.

Webhook events and status polls both end up in ``apply_transition``. Writes
for one agent are serialised by an in-process lock plus a row lock, so a push
and a pull racing for the same agent are applied one after the other.
"""
import logging
import threading
import time
from collections import defaultdict
from typing import Iterable, List, Optional

from django.conf import settings
from django.db import IntegrityError, OperationalError, transaction
from django.utils import timezone
from pydantic import BaseModel

from .exceptions import InstanceAlreadyExists
from .models import EventSource, InstanceRecord, InstanceSnapshot, InstanceState
from .signals import instance_deleted, instance_state_changed

logger = logging.getLogger('connections.state_store')

# Direct edges only. Entering NONE is done by delete(), entering CREATED by create().
ALLOWED_TRANSITIONS = {
    InstanceState.NONE: {InstanceState.CREATED},
    InstanceState.CREATED: {InstanceState.AWAITING_QR_SCAN, InstanceState.ERROR},
    InstanceState.AWAITING_QR_SCAN: {InstanceState.AWAITING_QR_SCAN, InstanceState.CONNECTED, InstanceState.ERROR},
    InstanceState.CONNECTED: {InstanceState.DISCONNECTED, InstanceState.ERROR},
    InstanceState.DISCONNECTED: {InstanceState.AWAITING_QR_SCAN, InstanceState.ERROR},
    InstanceState.ERROR: {InstanceState.ERROR},
}


def is_transition_allowed(current: InstanceState, candidate: InstanceState) -> bool:
    return candidate in ALLOWED_TRANSITIONS.get(current, set())


class TransitionPayload(BaseModel):
    qr_code: Optional[str] = None
    error_detail: Optional[str] = None
    source: EventSource = EventSource.USER
    reset_qr_count: bool = False


class TransitionResult(BaseModel):
    snapshot: InstanceSnapshot
    previous_state: InstanceState
    accepted: bool
    changed: bool

    @property
    def state(self) -> InstanceState:
        return self.snapshot.state


class InstanceStateStore:

    def __init__(self):
        self._locks = defaultdict(threading.RLock)
        self._registry_lock = threading.Lock()

    def _lock_for(self, agent_id: int) -> threading.RLock:
        with self._registry_lock:
            return self._locks[int(agent_id)]

    def _with_retry(self, func):
        """Retry database plumbing failures (e.g. "database is locked") with backoff."""
        attempts = max(1, int(getattr(settings, 'WHATSAPP_STORE_RETRIES', 3)))
        for attempt in range(attempts):
            try:
                return func()
            except OperationalError as e:
                # A failed statement inside an outer atomic block cannot be retried
                if attempt == attempts - 1 or transaction.get_connection().in_atomic_block:
                    raise
                delay = 0.05 * (2 ** attempt)
                logger.warning(f"Store operation failed ({e}); retrying in {delay:.2f}s")
                time.sleep(delay)

    @staticmethod
    def _next_timestamp(previous):
        now = timezone.now()
        if previous is not None and previous > now:
            return previous
        return now

    # Reads

    def get(self, agent_id: int) -> InstanceSnapshot:
        """Current snapshot, or the NONE snapshot when the agent has no instance."""
        record = InstanceRecord.objects.filter(agent_id=agent_id).first()
        if record is None:
            return InstanceSnapshot.none(int(agent_id))
        return InstanceSnapshot.from_record(record)

    def find_by_instance_name(self, instance_name: str) -> Optional[InstanceSnapshot]:
        record = InstanceRecord.objects.filter(instance_name=instance_name).first()
        if record is None:
            return None
        return InstanceSnapshot.from_record(record)

    def list_snapshots(self, agent_ids: Iterable[int]) -> List[InstanceSnapshot]:
        agent_ids = [int(agent_id) for agent_id in agent_ids]
        records = {record.agent_id: record for record in InstanceRecord.objects.filter(agent_id__in=agent_ids)}
        return [
            InstanceSnapshot.from_record(records[agent_id]) if agent_id in records else InstanceSnapshot.none(agent_id)
            for agent_id in agent_ids
        ]

    # Writes

    def create(self, agent_id: int, instance_name: str, phone_number: str = '', source: EventSource = EventSource.USER) -> InstanceSnapshot:
        """NONE -> CREATED. Raises InstanceAlreadyExists when the agent still has a record."""
        with self._lock_for(agent_id):
            def _create():
                with transaction.atomic():
                    existing = InstanceRecord.objects.select_for_update().filter(agent_id=agent_id).first()
                    if existing is not None:
                        raise InstanceAlreadyExists(agent_id, existing.instance_name)
                    now = timezone.now()
                    try:
                        with transaction.atomic():
                            return InstanceRecord.objects.create(
                                agent_id=agent_id,
                                instance_name=instance_name,
                                state=InstanceState.CREATED,
                                phone_number=phone_number or '',
                                last_event_source=source,
                                last_event_at=now,
                                updated_at=now,
                            )
                    except IntegrityError:
                        raise InstanceAlreadyExists(agent_id, instance_name)

            record = self._with_retry(_create)
            snapshot = InstanceSnapshot.from_record(record)
            logger.info(f"Instance {instance_name} created for agent {agent_id}")
            self._publish(snapshot, InstanceState.NONE)
            return snapshot

    def apply_transition(self, agent_id: int, candidate_state: InstanceState, payload: Optional[TransitionPayload] = None) -> TransitionResult:
        """
        Move the agent's record to ``candidate_state`` when the graph allows it.

        Disallowed candidates are rejected without raising: the record is left
        as it is and the current snapshot comes back with ``accepted=False``.

        ``instance_state_changed`` is sent once the store's own atomic block
        has exited, while the agent lock is still held. Callers must not wrap
        this in an outer ``atomic()``: observers would then see a change that
        can still roll back.
        """
        candidate_state = InstanceState(candidate_state)
        payload = payload or TransitionPayload()

        with self._lock_for(agent_id):
            result = self._with_retry(lambda: self._apply(agent_id, candidate_state, payload))
            if result.changed:
                self._publish(result.snapshot, result.previous_state)
            return result

    def _apply(self, agent_id: int, candidate: InstanceState, payload: TransitionPayload) -> TransitionResult:
        with transaction.atomic():
            record = InstanceRecord.objects.select_for_update().filter(agent_id=agent_id).first()
            if record is None:
                logger.info(f"Transition to {candidate} for agent {agent_id} dropped: no instance")
                return TransitionResult(
                    snapshot=InstanceSnapshot.none(int(agent_id)),
                    previous_state=InstanceState.NONE,
                    accepted=False,
                    changed=False,
                )

            current = InstanceState(record.state)

            if candidate == current and not (candidate == InstanceState.AWAITING_QR_SCAN and payload.qr_code and payload.qr_code != record.qr_code):
                # Same state again (duplicate webhook, repeated poll): only touch the record
                record.last_event_at = self._next_timestamp(record.last_event_at)
                record.updated_at = self._next_timestamp(record.updated_at)
                record.last_event_source = payload.source
                update_fields = ['last_event_at', 'updated_at', 'last_event_source']
                if candidate == InstanceState.ERROR and payload.error_detail:
                    # Keep the latest failure cause for diagnostics
                    record.error_detail = payload.error_detail
                    update_fields.append('error_detail')
                record.save(update_fields=update_fields)
                return TransitionResult(
                    snapshot=InstanceSnapshot.from_record(record),
                    previous_state=current,
                    accepted=True,
                    changed=False,
                )

            if not is_transition_allowed(current, candidate):
                logger.info(
                    f"Rejected transition {current} -> {candidate} for agent {agent_id} "
                    f"(source: {payload.source})"
                )
                return self._rejected(record, current)

            if candidate == InstanceState.AWAITING_QR_SCAN and not payload.qr_code:
                logger.warning(f"Rejected transition {current} -> {candidate} for agent {agent_id}: no QR code")
                return self._rejected(record, current)

            now = self._next_timestamp(record.updated_at)
            record.state = candidate
            if candidate == InstanceState.AWAITING_QR_SCAN:
                if payload.reset_qr_count or current != InstanceState.AWAITING_QR_SCAN:
                    record.qr_issue_count = 0
                record.qr_code = payload.qr_code
                record.qr_issued_at = now
                record.qr_issue_count += 1
            else:
                record.qr_code = None
                record.qr_issued_at = None
            if candidate == InstanceState.CONNECTED:
                record.qr_issue_count = 0
            record.error_detail = payload.error_detail if candidate == InstanceState.ERROR else None
            record.last_event_source = payload.source
            record.last_event_at = self._next_timestamp(record.last_event_at)
            record.updated_at = now
            record.save()

            logger.info(f"Agent {agent_id} instance {record.instance_name}: {current} -> {candidate} ({payload.source})")
            return TransitionResult(
                snapshot=InstanceSnapshot.from_record(record),
                previous_state=current,
                accepted=True,
                changed=True,
            )

    @staticmethod
    def _rejected(record: InstanceRecord, current: InstanceState) -> TransitionResult:
        return TransitionResult(
            snapshot=InstanceSnapshot.from_record(record),
            previous_state=current,
            accepted=False,
            changed=False,
        )

    def delete(self, agent_id: int) -> Optional[InstanceSnapshot]:
        """
        Remove the agent's record and tell pollers and observers to stop.
        Returns the removed snapshot, or None when there was nothing to clean up.
        """
        with self._lock_for(agent_id):
            def _delete():
                with transaction.atomic():
                    record = InstanceRecord.objects.select_for_update().filter(agent_id=agent_id).first()
                    if record is None:
                        return None
                    snapshot = InstanceSnapshot.from_record(record)
                    record.delete()
                    return snapshot

            removed = self._with_retry(_delete)
            if removed is None:
                logger.info(f"Delete for agent {agent_id}: no instance, nothing to clean up")
                return None

            logger.info(f"Instance {removed.instance_name} removed for agent {agent_id}")
            instance_deleted.send(sender=self, agent_id=int(agent_id), instance_name=removed.instance_name)
            return removed

    def _publish(self, snapshot: InstanceSnapshot, previous_state: InstanceState) -> None:
        instance_state_changed.send(sender=self, snapshot=snapshot, previous_state=previous_state)


instance_state_store = InstanceStateStore()
