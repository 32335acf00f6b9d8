"""
Tests for the reply pipeline and the default Gemini reply generator.
"""
from unittest.mock import MagicMock, patch

from django.contrib.auth.models import User
from django.test import TestCase, override_settings
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from aiengine.models import Agent
from aiengine.service import ReplyPipeline, generate_reply
from connections.models import GatewayFailure


def fake_generator(agent, text):
    return f'{agent.name}: {text}'


class GenerateReplyTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='owner', password='testpass123')
        self.agent = Agent.objects.create(user=self.user, name='Sales', system_prompt='Answer in Portuguese')

    @patch('aiengine.service.ChatGoogleGenerativeAI')
    def test_uses_system_prompt(self, model_class):
        model_class.return_value.invoke.return_value = AIMessage(content='  Olá!  ')

        self.assertEqual(generate_reply(self.agent, 'oi'), 'Olá!')

        messages = model_class.return_value.invoke.call_args.args[0]
        self.assertIsInstance(messages[0], SystemMessage)
        self.assertEqual(messages[0].content, 'Answer in Portuguese')
        self.assertIsInstance(messages[1], HumanMessage)
        self.assertEqual(messages[1].content, 'oi')

    @patch('aiengine.service.ChatGoogleGenerativeAI')
    def test_joins_multi_part_content(self, model_class):
        model_class.return_value.invoke.return_value = AIMessage(content=[{'type': 'text', 'text': 'Olá, '}, {'type': 'text', 'text': 'tudo bem?'}])
        self.assertEqual(generate_reply(self.agent, 'oi'), 'Olá, tudo bem?')


class ReplyPipelineTestCase(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(username='owner', password='testpass123')
        self.agent = Agent.objects.create(user=self.user, name='Sales', system_prompt='Be helpful')

    @override_settings(WHATSAPP_REPLY_GENERATOR='aiengine.tests.test_service.fake_generator')
    def test_generator_is_loaded_from_settings(self):
        pipeline = ReplyPipeline(gateway=MagicMock())
        self.assertEqual(pipeline.generate(self.agent, 'hello'), 'Sales: hello')

    def test_deliver(self):
        gateway = MagicMock()
        gateway.send_text_message.return_value = (True, {'key': {'id': 'OUT'}})
        pipeline = ReplyPipeline(generator=fake_generator, gateway=gateway)

        success, _ = pipeline.deliver('agent-instance', '5511999999999@s.whatsapp.net', 'Hi!', reply_to='IN1')

        self.assertTrue(success)
        gateway.send_text_message.assert_called_once_with(
            instance_name='agent-instance',
            number='5511999999999@s.whatsapp.net',
            message='Hi!',
            reply_to_message_id='IN1',
        )

    def test_deliver_failure(self):
        gateway = MagicMock()
        gateway.send_text_message.return_value = (False, GatewayFailure(message='timeout', transient=True))
        pipeline = ReplyPipeline(generator=fake_generator, gateway=gateway)
        success, failure = pipeline.deliver('agent-instance', '5511999999999@s.whatsapp.net', 'Hi!')
        self.assertFalse(success)
        self.assertTrue(failure.transient)
