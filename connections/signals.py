"""
Signals sent by the InstanceStateStore once a change is committed.

instance_state_changed: sender=store, snapshot=InstanceSnapshot, previous_state=InstanceState
instance_deleted: sender=store, agent_id=int, instance_name=str
"""
from django.dispatch import Signal

instance_state_changed = Signal()
instance_deleted = Signal()
