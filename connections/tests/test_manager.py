"""
Tests for the connection manager: the dashboard-facing instance lifecycle.
"""
from unittest.mock import MagicMock

from django.contrib.auth.models import User
from django.test import TestCase

from aiengine.models import Agent
from connections.exceptions import GatewayRequestError, InstanceAlreadyExists
from connections.manager import ConnectionManager
from connections.models import GatewayFailure, GatewayInstance, GatewayQRCode, InstanceRecord, InstanceState
from connections.observers import StatusObserverHub
from connections.state_store import InstanceStateStore

QR_ONE = 'data:image/png;base64,AAAA'


class ConnectionManagerTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='owner', password='testpass123')
        self.agent = Agent.objects.create(user=self.user, name='Sales', system_prompt='Be helpful')
        self.instance_name = f'agent-{self.agent.id}-user-{self.user.id}-whatsapp'
        self.store = InstanceStateStore()
        self.gateway = MagicMock()
        self.gateway.create_instance.return_value = (True, GatewayInstance(instance_name=self.instance_name))
        self.gateway.fetch_qr_code.return_value = (True, GatewayQRCode(base64=QR_ONE))
        self.gateway.delete_instance.return_value = (True, None)
        self.poller = MagicMock()
        self.hub = StatusObserverHub(store=self.store, poller=self.poller)
        self.manager = ConnectionManager(store=self.store, gateway=self.gateway, poller=self.poller, hub=self.hub)

    def test_create_instance(self):
        snapshot = self.manager.create_instance(self.agent.id, '+5511999999999')

        self.assertEqual(snapshot.state, InstanceState.CREATED)
        self.assertEqual(snapshot.instance_name, self.instance_name)
        self.gateway.create_instance.assert_called_once_with(self.instance_name, '+5511999999999')
        self.poller.start_polling.assert_called_once_with(self.agent.id)

    def test_create_instance_ignores_qr_in_create_response(self):
        self.gateway.create_instance.return_value = (True, GatewayInstance(
            instance_name=self.instance_name,
            qr_code=GatewayQRCode(base64=QR_ONE),
        ))
        snapshot = self.manager.create_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.CREATED)
        self.assertIsNone(snapshot.qr_code)

    def test_create_twice_is_refused_before_calling_gateway(self):
        self.manager.create_instance(self.agent.id)
        self.gateway.reset_mock()
        with self.assertRaises(InstanceAlreadyExists):
            self.manager.create_instance(self.agent.id)
        self.gateway.create_instance.assert_not_called()

    def test_create_gateway_failure(self):
        self.gateway.create_instance.return_value = (False, GatewayFailure(message='Invalid API key', status_code=401))
        with self.assertRaises(GatewayRequestError) as ctx:
            self.manager.create_instance(self.agent.id)
        self.assertEqual(ctx.exception.failure.status_code, 401)
        self.assertFalse(InstanceRecord.objects.exists())
        self.poller.start_polling.assert_not_called()

    def test_create_clears_ghost_instance_on_conflict(self):
        self.gateway.create_instance.side_effect = [
            (False, GatewayFailure(message='Instance name already exists', status_code=409)),
            (True, GatewayInstance(instance_name=self.instance_name)),
        ]
        snapshot = self.manager.create_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.CREATED)
        self.gateway.delete_instance.assert_called_once_with(self.instance_name)
        self.assertEqual(self.gateway.create_instance.call_count, 2)

    def test_activate_issues_qr(self):
        self.manager.create_instance(self.agent.id)
        snapshot = self.manager.activate_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.AWAITING_QR_SCAN)
        self.assertEqual(snapshot.qr_code, QR_ONE)
        self.assertEqual(snapshot.qr_issue_count, 1)
        self.assertEqual(snapshot.last_event_source, 'user')

    def test_activate_without_instance(self):
        snapshot = self.manager.activate_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.NONE)
        self.gateway.fetch_qr_code.assert_not_called()

    def test_activate_when_connected_is_a_no_op(self):
        self.manager.create_instance(self.agent.id)
        self.manager.activate_instance(self.agent.id)
        self.store.apply_transition(self.agent.id, InstanceState.CONNECTED)
        self.gateway.fetch_qr_code.reset_mock()

        snapshot = self.manager.activate_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.CONNECTED)
        self.gateway.fetch_qr_code.assert_not_called()

    def test_activate_transient_failure_keeps_state(self):
        self.manager.create_instance(self.agent.id)
        self.gateway.fetch_qr_code.return_value = (False, GatewayFailure(message='timeout', transient=True))
        with self.assertRaises(GatewayRequestError):
            self.manager.activate_instance(self.agent.id)
        self.assertEqual(self.store.get(self.agent.id).state, InstanceState.CREATED)

    def test_activate_terminal_failure_is_error(self):
        self.manager.create_instance(self.agent.id)
        self.gateway.fetch_qr_code.return_value = (False, GatewayFailure(message='Instance not found', status_code=404, not_found=True))
        with self.assertRaises(GatewayRequestError):
            self.manager.activate_instance(self.agent.id)
        snapshot = self.store.get(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.ERROR)
        self.assertEqual(snapshot.error_detail, 'Instance not found')

    def test_delete_instance(self):
        self.manager.create_instance(self.agent.id)
        result = self.manager.delete_instance(self.agent.id)
        self.assertTrue(result.deleted)
        self.assertEqual(result.instance_name, self.instance_name)
        self.gateway.delete_instance.assert_called_once_with(self.instance_name)
        self.assertEqual(self.store.get(self.agent.id).state, InstanceState.NONE)

    def test_delete_without_instance_succeeds(self):
        result = self.manager.delete_instance(self.agent.id)
        self.assertFalse(result.deleted)
        self.assertEqual(result.message, 'Nothing to clean up')
        self.gateway.delete_instance.assert_not_called()
        self.assertEqual(self.store.get(self.agent.id).state, InstanceState.NONE)

    def test_delete_survives_gateway_failure(self):
        self.manager.create_instance(self.agent.id)
        self.gateway.delete_instance.return_value = (False, GatewayFailure(message='timeout', transient=True))
        result = self.manager.delete_instance(self.agent.id)
        self.assertTrue(result.deleted)
        self.assertFalse(InstanceRecord.objects.exists())

    def test_recreate_after_delete(self):
        self.manager.create_instance(self.agent.id)
        self.manager.delete_instance(self.agent.id)
        snapshot = self.manager.create_instance(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.CREATED)

    def test_refresh_status_polls_once(self):
        self.manager.create_instance(self.agent.id)
        snapshot = self.manager.refresh_status(self.agent.id)
        self.poller.poll_once.assert_called_once_with(self.agent.id)
        self.assertEqual(snapshot.state, InstanceState.CREATED)

    def test_get_statuses(self):
        other = Agent.objects.create(user=self.user, name='Support', system_prompt='Be brief')
        self.manager.create_instance(self.agent.id)
        snapshots = self.manager.get_statuses([self.agent.id, other.id])
        self.assertEqual([s.state for s in snapshots], [InstanceState.CREATED, InstanceState.NONE])

    def test_subscribe_status(self):
        self.manager.create_instance(self.agent.id)
        subscription = self.manager.subscribe_status(self.agent.id)
        self.assertEqual(subscription.next(timeout=0).state, InstanceState.CREATED)
        self.assertEqual(self.hub.observer_count(self.agent.id), 1)
        subscription.close()
