from typing import Optional

from .models import GatewayFailure


class ConnectionsError(Exception):
    """Base class for errors raised by the connections app."""


class InstanceAlreadyExists(ConnectionsError):
    def __init__(self, agent_id: int, instance_name: Optional[str] = None):
        super().__init__(f"Agent {agent_id} already has a WhatsApp instance ({instance_name})")
        self.agent_id = agent_id
        self.instance_name = instance_name


class GatewayRequestError(ConnectionsError):
    """A user-triggered gateway call failed; carries the GatewayFailure."""

    def __init__(self, failure: GatewayFailure):
        super().__init__(failure.message)
        self.failure = failure
