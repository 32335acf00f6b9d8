import logging
import os
from typing import Callable, Optional, Tuple, Union

from django.conf import settings
from django.utils.module_loading import import_string
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from base.env_config import GEMINI_API_KEY
from connections.models import GatewayFailure
from connections.services import EvolutionAPIService, evolution_api_service

from .models import Agent

logger = logging.getLogger("aiengine.service")

if GEMINI_API_KEY:
    os.environ.setdefault('GOOGLE_API_KEY', GEMINI_API_KEY)

DEFAULT_MODEL = "gemini-2.5-flash"


def generate_reply(agent: Agent, text: str) -> str:
    """
    Default reply generator: one Gemini call with the agent's system prompt.
    Returns an empty string when the model has nothing to say.
    """
    model = ChatGoogleGenerativeAI(model=DEFAULT_MODEL)
    messages = [
        SystemMessage(content=agent.system_prompt),
        HumanMessage(content=text),
    ]
    response = model.invoke(messages)
    content = response.content
    if isinstance(content, list):
        # Multi-part answers come back as a list of text blocks
        content = ''.join(part.get('text', '') if isinstance(part, dict) else str(part) for part in content)
    return (content or '').strip()


class ReplyPipeline:
    """Boundary to the reply generator and to outbound delivery."""

    def __init__(self, generator: Optional[Callable[[Agent, str], str]] = None, gateway: Optional[EvolutionAPIService] = None):
        self._generator = generator
        self.gateway = gateway or evolution_api_service

    @property
    def generator(self) -> Callable[[Agent, str], str]:
        if self._generator is None:
            self._generator = import_string(settings.WHATSAPP_REPLY_GENERATOR)
        return self._generator

    def generate(self, agent: Agent, text: str) -> str:
        logger.info(f"Generating reply for agent {agent.id}")
        return self.generator(agent, text)

    def deliver(self, instance_name: str, to: str, text: str, reply_to: Optional[str] = None) -> Tuple[bool, Union[dict, GatewayFailure]]:
        success, result = self.gateway.send_text_message(
            instance_name=instance_name,
            number=to,
            message=text,
            reply_to_message_id=reply_to,
        )
        if not success:
            logger.error(f"Failed to send message to {to[:3]}...{to[-3:]} via {instance_name}: {result}")
        return success, result
