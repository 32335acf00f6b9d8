import logging
import re
from typing import Optional, Tuple, Union

import requests
from django.conf import settings

from .models import (
    GatewayFailure,
    GatewayInstance,
    GatewayQRCode,
    GatewayStatus,
    InstanceState,
)

# Set up logging
logger = logging.getLogger('connections.services')

INSTANCE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
WEBHOOK_EVENTS = ["MESSAGES_UPSERT", "CONNECTION_UPDATE", "QRCODE_UPDATED"]

_CONNECTED_VALUES = {'open', 'connected'}
_DISCONNECTED_VALUES = {'close', 'closed', 'disconnected'}
_PAIRING_VALUES = {'connecting'}


def map_gateway_state(raw_state: Optional[str]) -> Optional[InstanceState]:
    """
    Translate the gateway's connection vocabulary into InstanceState.

    Returns None for "connecting", which only says pairing is in progress
    and carries no transition of its own. Anything unrecognised is ERROR.
    """
    value = (raw_state or '').strip().lower()
    if value in _CONNECTED_VALUES:
        return InstanceState.CONNECTED
    if value in _DISCONNECTED_VALUES:
        return InstanceState.DISCONNECTED
    if value in _PAIRING_VALUES:
        return None
    return InstanceState.ERROR


def generate_instance_name(agent_id: Union[str, int], user_id: Union[str, int, None] = None) -> str:
    if user_id is None:
        return f"agent-{agent_id}-whatsapp"
    return f"agent-{agent_id}-user-{user_id}-whatsapp"


def validate_instance_name(instance_name: str) -> bool:
    return bool(instance_name) and bool(INSTANCE_NAME_PATTERN.match(instance_name))


def format_phone_number(number: str) -> str:
    """Strip a JID or +prefixed number down to digits (e.g. 5511999999999@s.whatsapp.net)."""
    if not number:
        return ''
    local_part = number.split('@', 1)[0]
    cleaned = ''.join(filter(str.isdigit, local_part))
    if len(cleaned) == 11 and cleaned.startswith('0'):
        return cleaned[1:]
    return cleaned


def clean_qr_base64(base64_data: str) -> str:
    # Remove duplicate data:image/png;base64, prefix if present
    prefix = 'data:image/png;base64,'
    while base64_data.startswith(prefix + prefix):
        base64_data = base64_data[len(prefix):]
    return base64_data


class EvolutionAPIService:
    """
    Client for the Evolution API gateway.

    Every call returns ``(success, result)``; on failure ``result`` is a
    GatewayFailure whose ``transient`` flag tells timeouts and unreachable
    hosts apart from answers the gateway actually gave.
    """

    def __init__(self, host_url: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self._host_url = host_url
        self._api_key = api_key
        self._timeout = timeout

    @property
    def host_url(self) -> str:
        return (self._host_url or settings.EVOLUTION_HOST_URL).rstrip('/')

    @property
    def admin_api_key(self) -> str:
        return self._api_key if self._api_key is not None else settings.EVOLUTION_API_KEY

    @property
    def timeout(self) -> float:
        return self._timeout if self._timeout is not None else settings.WHATSAPP_GATEWAY_TIMEOUT

    def get_headers(self, api_key: Optional[str] = None) -> dict:
        if api_key is None:
            api_key = self.admin_api_key
        return {
            'apikey': api_key,
            'Content-Type': 'application/json',
        }

    def _request(self, method: str, endpoint: str, **kwargs) -> Tuple[bool, Union[dict, list, GatewayFailure]]:
        url = f"{self.host_url}/{endpoint.lstrip('/')}"
        try:
            logger.debug(f"Making {method.upper()} request to Evolution API: {url}")
            response = requests.request(method, url, headers=self.get_headers(), timeout=self.timeout, **kwargs)
            response.raise_for_status()
            if not response.content:
                return True, {}
            return True, response.json()
        except requests.exceptions.Timeout:
            return False, GatewayFailure(message="Request timeout - WhatsApp host is not responding", transient=True)
        except requests.exceptions.ConnectionError:
            return False, GatewayFailure(message="Connection error - Unable to reach WhatsApp host", transient=True)
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code
            if status_code == 401:
                return False, GatewayFailure(message="Invalid API key - Authentication failed", status_code=401)
            elif status_code == 404:
                return False, GatewayFailure(message="Instance not found", status_code=404, not_found=True)
            elif status_code == 409:
                return False, GatewayFailure(message="Instance name already exists", status_code=409)
            else:
                return False, GatewayFailure(
                    message=f"HTTP error {status_code}: {e.response.text[:500]}",
                    status_code=status_code,
                    transient=status_code >= 500,
                )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {str(e)}")
            return False, GatewayFailure(message=f"Request failed: {str(e)}", transient=True)
        except ValueError as e:
            logger.error(f"Invalid JSON from Evolution API at {url}: {str(e)}")
            return False, GatewayFailure(message=f"Invalid response from WhatsApp host: {str(e)}", transient=True)

    def webhook_url(self) -> str:
        url = f"{settings.SITE_URL.rstrip('/')}/aiengine/webhook/"
        token = getattr(settings, 'WHATSAPP_WEBHOOK_TOKEN', '')
        if token:
            url = f"{url}?token={token}"
        return url

    def create_instance(self, instance_name: str, phone_number: Optional[str] = None) -> Tuple[bool, Union[GatewayInstance, GatewayFailure]]:
        """
        Create a new Evolution API instance with QR pairing and our webhook registered.

        Returns:
            Tuple[bool, Union[GatewayInstance, GatewayFailure]]:
            - (True, GatewayInstance) on success
            - (False, GatewayFailure) on failure
        """
        logger.info(f"Creating Evolution API instance: {instance_name}")

        payload = {
            "instanceName": instance_name,
            "qrcode": True,
            "integration": "WHATSAPP-BAILEYS",
            "rejectCall": False,
            "alwaysOnline": True,
            "readMessages": False,
            "readStatus": False,
            "syncFullHistory": False,
            "webhook": {
                "url": self.webhook_url(),
                "byEvents": False,
                "base64": True,
                "events": WEBHOOK_EVENTS,
            },
        }
        if phone_number:
            # Evolution API wants the number without the + sign
            payload["number"] = format_phone_number(phone_number)

        success, data = self._request('post', '/instance/create', json=payload)
        if not success:
            logger.error(f"Evolution API failed to create instance {instance_name}: {data}")
            return False, data

        instance_data = data.get('instance', {}) or {}
        qrcode_data = data.get('qrcode') or {}
        qr_code = None
        if qrcode_data.get('base64'):
            qr_code = GatewayQRCode(
                pairing_code=qrcode_data.get('pairingCode') or None,
                code=qrcode_data.get('code', ''),
                base64=clean_qr_base64(qrcode_data['base64']),
                count=qrcode_data.get('count', 0) or 0,
            )

        instance = GatewayInstance(
            instance_name=instance_data.get('instanceName') or instance_name,
            instance_id=instance_data.get('instanceId', '') or '',
            status=instance_data.get('status', '') or '',
            qr_code=qr_code,
        )
        logger.info(f"Evolution API instance created successfully: {instance.instance_name}")
        return True, instance

    def fetch_qr_code(self, instance_name: str) -> Tuple[bool, Union[GatewayQRCode, GatewayFailure]]:
        """Ask the gateway to (re)start pairing and hand back the current QR code."""
        success, data = self._request('get', f'/instance/connect/{instance_name}')
        if not success:
            return False, data

        # Some gateway versions nest the payload under "qrcode"
        qr_data = data.get('qrcode') if isinstance(data.get('qrcode'), dict) else data
        base64_data = qr_data.get('base64', '') or ''
        if not base64_data:
            return False, GatewayFailure(message="No QR code in gateway response")

        return True, GatewayQRCode(
            pairing_code=qr_data.get('pairingCode') or None,
            code=qr_data.get('code', '') or '',
            base64=clean_qr_base64(base64_data),
            count=qr_data.get('count', 0) or 0,
        )

    def fetch_status(self, instance_name: str, include_qr: bool = False) -> Tuple[bool, Union[GatewayStatus, GatewayFailure]]:
        """
        Pull the connection state, and the QR code too when asked and the
        instance is not open.
        """
        success, data = self._request('get', f'/instance/connectionState/{instance_name}')
        if not success:
            return False, data

        # {"instance": {"instanceName": "...", "state": "open"}} or the flat form
        instance_data = data.get('instance') if isinstance(data.get('instance'), dict) else data
        raw_state = instance_data.get('state') or instance_data.get('connectionStatus') or ''
        status = GatewayStatus(
            instance_name=instance_data.get('instanceName') or instance_name,
            state=raw_state,
        )

        if include_qr and map_gateway_state(raw_state) != InstanceState.CONNECTED:
            qr_success, qr_result = self.fetch_qr_code(instance_name)
            if qr_success:
                status = status.model_copy(update={'qr_code': qr_result})
            elif qr_result.transient:
                return False, qr_result
            else:
                logger.warning(f"Could not fetch QR code for {instance_name}: {qr_result}")

        return True, status

    def delete_instance(self, instance_name: str) -> Tuple[bool, Union[str, None, GatewayFailure]]:
        """Tear down the remote instance. An instance the gateway does not know counts as deleted."""
        success, data = self._request('delete', f'/instance/delete/{instance_name}')
        if success:
            return True, data.get('message') if isinstance(data, dict) else None
        if data.not_found:
            logger.info(f"Instance {instance_name} already absent on gateway - nothing to clean up")
            return True, None
        return False, data

    def send_text_message(self, instance_name: str, number: str, message: str, reply_to_message_id: Optional[str] = None) -> Tuple[bool, Union[dict, GatewayFailure]]:
        payload = {
            "number": format_phone_number(number) or number,
            "text": message.strip(),
        }
        if reply_to_message_id:
            payload["quoted"] = {"key": {"id": reply_to_message_id}}
        return self._request('post', f'/message/sendText/{instance_name}', json=payload)


evolution_api_service = EvolutionAPIService()
