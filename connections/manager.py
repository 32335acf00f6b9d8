"""
User-triggered instance actions for the dashboard layer.
"""
import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel

from aiengine.models import Agent

from .exceptions import GatewayRequestError, InstanceAlreadyExists
from .models import EventSource, InstanceSnapshot, InstanceState
from .observers import StatusObserverHub, Subscription, status_observer_hub
from .poller import ReconciliationPoller, reconciliation_poller
from .services import EvolutionAPIService, evolution_api_service, generate_instance_name
from .state_store import InstanceStateStore, TransitionPayload, instance_state_store

logger = logging.getLogger('connections.manager')


class DeleteResult(BaseModel):
    deleted: bool
    instance_name: Optional[str] = None
    message: str


class ConnectionManager:

    def __init__(
        self,
        store: Optional[InstanceStateStore] = None,
        gateway: Optional[EvolutionAPIService] = None,
        poller: Optional[ReconciliationPoller] = None,
        hub: Optional[StatusObserverHub] = None,
    ):
        self.store = store or instance_state_store
        self.gateway = gateway or evolution_api_service
        self.poller = poller or reconciliation_poller
        self.hub = hub or status_observer_hub

    def create_instance(self, agent_id: int, phone_number: str = '') -> InstanceSnapshot:
        """
        Provision a gateway instance for the agent and record it as CREATED.

        Raises InstanceAlreadyExists when the agent still has a record and
        GatewayRequestError when the gateway refuses.
        """
        existing = self.store.get(agent_id)
        if existing.exists:
            raise InstanceAlreadyExists(agent_id, existing.instance_name)

        user_id = Agent.objects.filter(pk=agent_id).values_list('user_id', flat=True).first()
        instance_name = generate_instance_name(agent_id, user_id)

        success, result = self.gateway.create_instance(instance_name, phone_number)
        if not success and result.status_code == 409:
            # A ghost of an earlier instance is still on the gateway
            logger.warning(f"Instance {instance_name} already exists on gateway; removing it and retrying")
            self.gateway.delete_instance(instance_name)
            success, result = self.gateway.create_instance(instance_name, phone_number)
        if not success:
            logger.error(f"Failed to create instance for agent {agent_id}: {result}")
            raise GatewayRequestError(result)

        snapshot = self.store.create(agent_id, result.instance_name, phone_number or '')
        self.poller.start_polling(agent_id)
        return snapshot

    def activate_instance(self, agent_id: int) -> InstanceSnapshot:
        """Ask the gateway for a fresh QR code and move the record to AWAITING_QR_SCAN."""
        snapshot = self.store.get(agent_id)
        if not snapshot.exists or snapshot.state == InstanceState.CONNECTED:
            return snapshot

        success, result = self.gateway.fetch_qr_code(snapshot.instance_name)
        if not success:
            if not result.transient:
                self.store.apply_transition(
                    agent_id,
                    InstanceState.ERROR,
                    TransitionPayload(error_detail=result.message, source=EventSource.USER),
                )
            raise GatewayRequestError(result)

        transition = self.store.apply_transition(
            agent_id,
            InstanceState.AWAITING_QR_SCAN,
            TransitionPayload(qr_code=result.base64, source=EventSource.USER, reset_qr_count=True),
        )
        return transition.snapshot

    def delete_instance(self, agent_id: int) -> DeleteResult:
        """Remove the instance on both sides. Deleting nothing is a success."""
        snapshot = self.store.get(agent_id)
        if not snapshot.exists:
            return DeleteResult(deleted=False, message="Nothing to clean up")

        success, result = self.gateway.delete_instance(snapshot.instance_name)
        if not success:
            logger.warning(f"Gateway delete failed for {snapshot.instance_name} (may already be gone): {result}")

        removed = self.store.delete(agent_id)
        if removed is None:
            return DeleteResult(deleted=False, message="Nothing to clean up")
        return DeleteResult(deleted=True, instance_name=removed.instance_name, message="Instance removed")

    def refresh_status(self, agent_id: int) -> InstanceSnapshot:
        self.poller.poll_once(agent_id)
        return self.store.get(agent_id)

    def get_status(self, agent_id: int) -> InstanceSnapshot:
        return self.store.get(agent_id)

    def get_statuses(self, agent_ids: Iterable[int]) -> List[InstanceSnapshot]:
        return self.store.list_snapshots(agent_ids)

    def subscribe_status(self, agent_id: int) -> Subscription:
        return self.hub.subscribe(agent_id)


connection_manager = ConnectionManager()
