"""
Active reconciliation of instance state against the gateway.

One daemon thread per agent asks the gateway for the connection state at a
fixed interval and feeds the answer through the same transition function as
webhook events, so a poll and a webhook racing for the same agent cannot
leave the record in a state the graph does not allow.
"""
import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Dict, Optional

from django.conf import settings
from django.db import connection as db_connection
from django.utils import timezone

from .models import EventSource, InstanceSnapshot, InstanceState
from .services import EvolutionAPIService, evolution_api_service, map_gateway_state
from .signals import instance_deleted
from .state_store import InstanceStateStore, TransitionPayload, TransitionResult, instance_state_store

logger = logging.getLogger('connections.poller')


class _PollWorker:
    def __init__(self, agent_id: int, should_continue: Optional[Callable[[], bool]]):
        self.agent_id = agent_id
        self.should_continue = should_continue
        self.stop_event = threading.Event()
        self.started_at = time.monotonic()
        self.thread: Optional[threading.Thread] = None

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive() and not self.stop_event.is_set()


class ReconciliationPoller:

    def __init__(
        self,
        store: Optional[InstanceStateStore] = None,
        gateway: Optional[EvolutionAPIService] = None,
        interval: Optional[float] = None,
        max_duration: Optional[float] = None,
    ):
        self.store = store or instance_state_store
        self.gateway = gateway or evolution_api_service
        self._interval = interval
        self._max_duration = max_duration
        self._workers: Dict[int, _PollWorker] = {}
        self._lock = threading.Lock()
        instance_deleted.connect(self._on_instance_deleted)

    @property
    def interval(self) -> float:
        return self._interval if self._interval is not None else settings.WHATSAPP_POLL_INTERVAL

    @property
    def max_duration(self) -> float:
        return self._max_duration if self._max_duration is not None else settings.WHATSAPP_POLL_MAX_DURATION

    def start_polling(self, agent_id: int, should_continue: Optional[Callable[[], bool]] = None) -> bool:
        """
        Start (or keep) the poll loop for an agent.
        Returns False when a loop was already running.
        """
        agent_id = int(agent_id)
        with self._lock:
            worker = self._workers.get(agent_id)
            if worker is not None and worker.is_alive():
                if should_continue is not None:
                    worker.should_continue = should_continue
                return False

            worker = _PollWorker(agent_id, should_continue)
            worker.thread = threading.Thread(
                target=self._run,
                args=(worker,),
                name=f"whatsapp-poller-{agent_id}",
                daemon=True,
            )
            self._workers[agent_id] = worker
            worker.thread.start()

        logger.info(f"Polling started for agent {agent_id} every {self.interval}s")
        return True

    def stop_polling(self, agent_id: int) -> bool:
        agent_id = int(agent_id)
        with self._lock:
            worker = self._workers.pop(agent_id, None)
        if worker is None:
            return False
        worker.stop_event.set()
        logger.info(f"Polling stopped for agent {agent_id}")
        return True

    def stop_all(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.stop_event.set()

    def is_polling(self, agent_id: int) -> bool:
        with self._lock:
            worker = self._workers.get(int(agent_id))
        return worker is not None and worker.is_alive()

    def join(self, agent_id: int, timeout: Optional[float] = None) -> None:
        """Wait for an agent's loop thread to finish (tests and shutdown)."""
        with self._lock:
            worker = self._workers.get(int(agent_id))
        if worker is not None and worker.thread is not None:
            worker.thread.join(timeout)

    def _on_instance_deleted(self, sender, agent_id, **kwargs):
        if sender is self.store:
            self.stop_polling(agent_id)

    def _run(self, worker: _PollWorker) -> None:
        try:
            while not worker.stop_event.is_set():
                try:
                    reason = self._stop_reason(worker)
                    if reason:
                        logger.info(f"Polling for agent {worker.agent_id} finished: {reason}")
                        break
                    self.poll_once(worker.agent_id)
                except Exception as e:
                    # Keep the cadence; the next tick tries again
                    logger.error(f"Poll for agent {worker.agent_id} failed: {e}", exc_info=True)
                if worker.stop_event.wait(self.interval):
                    break
        finally:
            with self._lock:
                if self._workers.get(worker.agent_id) is worker:
                    del self._workers[worker.agent_id]
            db_connection.close()

    def _stop_reason(self, worker: _PollWorker) -> Optional[str]:
        if time.monotonic() - worker.started_at > self.max_duration:
            return "maximum unattended duration reached"
        if worker.should_continue is not None and not worker.should_continue():
            return "no observers left"
        snapshot = self.store.get(worker.agent_id)
        if snapshot.state == InstanceState.NONE:
            return "instance deleted"
        if snapshot.state == InstanceState.CONNECTED:
            return "instance connected"
        return None

    def _needs_qr(self, snapshot: InstanceSnapshot) -> bool:
        if snapshot.state == InstanceState.CREATED:
            return True
        if snapshot.state == InstanceState.AWAITING_QR_SCAN:
            return self._qr_expired(snapshot)
        return False

    @staticmethod
    def _qr_expired(snapshot: InstanceSnapshot) -> bool:
        if snapshot.qr_issued_at is None:
            return True
        return timezone.now() - snapshot.qr_issued_at >= timedelta(seconds=settings.WHATSAPP_QR_TTL)

    def poll_once(self, agent_id: int) -> Optional[TransitionResult]:
        """
        One reconciliation step. Returns the transition result, or None when
        there was nothing to apply (no instance, transport failure, pairing in progress).
        """
        snapshot = self.store.get(agent_id)
        if not snapshot.exists:
            return None

        include_qr = self._needs_qr(snapshot)
        expired_qr = snapshot.state == InstanceState.AWAITING_QR_SCAN and include_qr
        if expired_qr and snapshot.qr_issue_count >= settings.WHATSAPP_MAX_QR_ISSUES:
            logger.warning(f"QR code for agent {agent_id} expired {snapshot.qr_issue_count} times without a scan")
            return self.store.apply_transition(
                agent_id,
                InstanceState.ERROR,
                TransitionPayload(error_detail='qr_expired', source=EventSource.POLL),
            )

        success, status = self.gateway.fetch_status(snapshot.instance_name, include_qr=include_qr)
        if not success:
            if status.transient:
                logger.warning(f"Status poll for {snapshot.instance_name} failed, will retry: {status}")
                return None
            logger.error(f"Gateway reported a terminal error for {snapshot.instance_name}: {status}")
            return self.store.apply_transition(
                agent_id,
                InstanceState.ERROR,
                TransitionPayload(error_detail=status.message, source=EventSource.POLL),
            )

        if status.qr_code is not None:
            candidate = InstanceState.AWAITING_QR_SCAN
        else:
            candidate = map_gateway_state(status.state)
        if candidate is None:
            logger.debug(f"Instance {snapshot.instance_name} is pairing; nothing to apply")
            return None

        payload = TransitionPayload(
            qr_code=status.qr_code.base64 if status.qr_code else None,
            error_detail=status.state if candidate == InstanceState.ERROR else None,
            source=EventSource.POLL,
        )
        return self.store.apply_transition(agent_id, candidate, payload)


reconciliation_poller = ReconciliationPoller()
