"""
Tests for the JSON auth and agent ownership decorators.
"""
import json

from django.contrib.auth.models import AnonymousUser, User
from django.http import JsonResponse
from django.test import RequestFactory, TestCase

from aiengine.models import Agent
from core.decorators import agent_owner_required, login_required_json


@login_required_json
def whoami(request):
    return JsonResponse({'user': request.user.username})


@agent_owner_required
def agent_name(request, agent):
    return JsonResponse({'agent': agent.name})


class DecoratorTestCase(TestCase):

    def setUp(self):
        self.factory = RequestFactory()
        self.user = User.objects.create_user(username='owner', password='testpass123')
        self.stranger = User.objects.create_user(username='stranger', password='testpass123')
        self.agent = Agent.objects.create(user=self.user, name='Sales', system_prompt='Be helpful')

    def _request(self, user):
        request = self.factory.get('/')
        request.user = user
        return request

    def test_login_required_json(self):
        self.assertEqual(whoami(self._request(AnonymousUser())).status_code, 401)
        response = whoami(self._request(self.user))
        self.assertEqual(json.loads(response.content), {'user': 'owner'})

    def test_owner_gets_agent(self):
        response = agent_name(self._request(self.user), agent_id=self.agent.id)
        self.assertEqual(json.loads(response.content), {'agent': 'Sales'})

    def test_anonymous_is_401(self):
        self.assertEqual(agent_name(self._request(AnonymousUser()), agent_id=self.agent.id).status_code, 401)

    def test_stranger_gets_404(self):
        response = agent_name(self._request(self.stranger), agent_id=self.agent.id)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(json.loads(response.content)['message'], 'Agent not found')

    def test_missing_agent_is_404(self):
        self.assertEqual(agent_name(self._request(self.user), agent_id=9999).status_code, 404)
