"""
Fan-out of instance snapshots to dashboard sessions.

The hub owns the polling decision: an agent is polled while somebody is
watching it and it is not connected yet.
"""
import logging
import threading
import time
import uuid
from typing import Dict, Iterator, Optional, Union

from django.conf import settings

from .models import InstanceSnapshot, InstanceState
from .poller import ReconciliationPoller, reconciliation_poller
from .signals import instance_deleted, instance_state_changed
from .state_store import InstanceStateStore, instance_state_store

logger = logging.getLogger('connections.observers')


class Subscription:
    """
    One observer of one agent. Keeps only the newest snapshot, so a slow
    reader never holds up writers and never sees an outdated state last.
    """

    def __init__(self, hub: 'StatusObserverHub', agent_id: int, snapshot: Optional[InstanceSnapshot] = None):
        self.id = uuid.uuid4().hex[:12]
        self.agent_id = agent_id
        self._hub = hub
        self._condition = threading.Condition()
        self._latest = snapshot
        self._version = 0 if snapshot is None else 1
        self._seen = 0
        self._closed = False
        self.last_seen = time.monotonic()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest(self) -> InstanceSnapshot:
        return self._latest

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def push(self, snapshot: InstanceSnapshot) -> None:
        with self._condition:
            if self._closed:
                return
            self._latest = snapshot
            self._version += 1
            self._condition.notify_all()

    def seed(self, snapshot: InstanceSnapshot) -> None:
        """Set the initial snapshot unless a published one already arrived."""
        with self._condition:
            if self._version == 0:
                self._latest = snapshot
                self._version = 1
                self._condition.notify_all()

    def next(self, timeout: Optional[float] = None) -> Optional[InstanceSnapshot]:
        """
        Block until a snapshot newer than the last one returned is available.
        Returns None on timeout or once the subscription is closed and drained.
        """
        self.touch()
        with self._condition:
            self._condition.wait_for(lambda: self._version > self._seen or self._closed, timeout)
            if self._version > self._seen:
                self._seen = self._version
                return self._latest
            return None

    def __iter__(self) -> Iterator[InstanceSnapshot]:
        while True:
            snapshot = self.next()
            if snapshot is None:
                return
            yield snapshot

    def _mark_closed(self) -> None:
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def close(self) -> None:
        self._hub.unsubscribe(self)


class StatusObserverHub:

    def __init__(
        self,
        store: Optional[InstanceStateStore] = None,
        poller: Optional[ReconciliationPoller] = None,
        liveness_timeout: Optional[float] = None,
    ):
        self.store = store or instance_state_store
        self.poller = poller or reconciliation_poller
        self._liveness_timeout = liveness_timeout
        self._subscriptions: Dict[int, Dict[str, Subscription]] = {}
        self._lock = threading.Lock()
        instance_state_changed.connect(self._on_state_changed)
        instance_deleted.connect(self._on_instance_deleted)

    @property
    def liveness_timeout(self) -> float:
        if self._liveness_timeout is not None:
            return self._liveness_timeout
        return settings.WHATSAPP_OBSERVER_TIMEOUT

    def subscribe(self, agent_id: int) -> Subscription:
        agent_id = int(agent_id)
        subscription = Subscription(self, agent_id)
        # Registered before the read so no committed change can fall in between
        with self._lock:
            self._subscriptions.setdefault(agent_id, {})[subscription.id] = subscription
        with self.store._lock_for(agent_id):
            subscription.seed(self.store.get(agent_id))
            state = subscription.latest.state
            self._update_polling(agent_id, state)
        logger.info(f"Observer {subscription.id} subscribed to agent {agent_id} ({state})")
        return subscription

    def unsubscribe(self, subscription: Union[Subscription, str], agent_id: Optional[int] = None) -> bool:
        if isinstance(subscription, Subscription):
            subscription_id, agent_id = subscription.id, subscription.agent_id
        else:
            subscription_id = subscription
        if agent_id is None:
            return False

        with self._lock:
            agent_subscriptions = self._subscriptions.get(int(agent_id), {})
            removed = agent_subscriptions.pop(subscription_id, None)
            remaining = len(agent_subscriptions)
            if not agent_subscriptions:
                self._subscriptions.pop(int(agent_id), None)

        if removed is None:
            return False
        removed._mark_closed()
        logger.info(f"Observer {subscription_id} left agent {agent_id} ({remaining} remaining)")
        if remaining == 0:
            self.poller.stop_polling(agent_id)
        return True

    def observer_count(self, agent_id: int) -> int:
        self.reap_stale(agent_id)
        with self._lock:
            return len(self._subscriptions.get(int(agent_id), {}))

    def reap_stale(self, agent_id: Optional[int] = None) -> int:
        """Drop observers that stopped reading for longer than the liveness timeout."""
        deadline = time.monotonic() - self.liveness_timeout
        with self._lock:
            if agent_id is None:
                candidates = [sub for subs in self._subscriptions.values() for sub in subs.values()]
            else:
                candidates = list(self._subscriptions.get(int(agent_id), {}).values())
        stale = [sub for sub in candidates if sub.last_seen < deadline]
        for subscription in stale:
            logger.info(f"Observer {subscription.id} for agent {subscription.agent_id} timed out")
            self.unsubscribe(subscription)
        return len(stale)

    def publish(self, snapshot: InstanceSnapshot) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.get(snapshot.agent_id, {}).values())
        for subscription in subscriptions:
            subscription.push(snapshot)
        self._update_polling(snapshot.agent_id, snapshot.state)

    def _has_live_observers(self, agent_id: int) -> bool:
        return self.observer_count(agent_id) > 0

    def _update_polling(self, agent_id: int, state: InstanceState) -> None:
        with self._lock:
            watched = bool(self._subscriptions.get(agent_id))
        if state == InstanceState.CONNECTED:
            self.poller.stop_polling(agent_id)
        elif watched and state != InstanceState.NONE:
            self.poller.start_polling(agent_id, should_continue=lambda: self._has_live_observers(agent_id))

    def _on_state_changed(self, sender, snapshot, **kwargs):
        if sender is self.store:
            self.publish(snapshot)

    def _on_instance_deleted(self, sender, agent_id, **kwargs):
        if sender is not self.store:
            return
        with self._lock:
            subscriptions = list(self._subscriptions.pop(int(agent_id), {}).values())
        final = InstanceSnapshot.none(int(agent_id))
        for subscription in subscriptions:
            subscription.push(final)
            subscription._mark_closed()
        if subscriptions:
            logger.info(f"Closed {len(subscriptions)} observers of deleted instance for agent {agent_id}")


status_observer_hub = StatusObserverHub()
