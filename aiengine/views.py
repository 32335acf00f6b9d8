import json
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.utils.crypto import constant_time_compare
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from .exceptions import InvalidWebhookEvent
from .webhook import WebhookIngestor, webhook_ingestor

logger = logging.getLogger("aiengine.views")


@method_decorator(csrf_exempt, name='dispatch')
class EvolutionWebhookView(View):
    """
    Class based webhook endpoint for receiving events from Evolution API.
    """
    ingestor: WebhookIngestor = webhook_ingestor

    def post(self, request: HttpRequest):
        expected_token = getattr(settings, 'WHATSAPP_WEBHOOK_TOKEN', '')
        if expected_token and not constant_time_compare(request.GET.get('token', ''), expected_token):
            logger.warning("Webhook request with missing or wrong token. Skipping...")
            return JsonResponse({'success': False, 'status': 'forbidden', 'error': 'Invalid webhook token'}, status=403)

        try:
            data = json.loads(request.body.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Webhook body is not valid JSON: {e}")
            return JsonResponse({'success': False, 'status': 'invalid_json', 'error': 'Body is not valid JSON'}, status=400)

        try:
            result = self.ingestor.ingest(data)
        except InvalidWebhookEvent as e:
            logger.warning(f"Rejected webhook ({e.code}): {e.message}")
            return JsonResponse(e.as_dict(), status=400)
        except Exception as e:
            logger.error(f"Error processing webhook: {e}", exc_info=True)
            return JsonResponse({'success': False, 'status': 'error', 'error': 'Internal error'}, status=500)

        logger.info(f"Webhook {result.event} processed: {result.status}")
        return JsonResponse(result.as_dict())
