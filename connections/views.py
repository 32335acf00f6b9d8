import json
import logging

from django.conf import settings
from django.http import HttpRequest, JsonResponse, StreamingHttpResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from aiengine.models import Agent
from core.decorators import agent_owner_required, login_required_json

from .exceptions import GatewayRequestError, InstanceAlreadyExists
from .manager import connection_manager

# Set up logging
logger = logging.getLogger('connections.views')


def _status_response(snapshot, status=200, **extra):
    return JsonResponse({'status': 'success', 'instance': snapshot.to_dict(), **extra}, status=status)


def _gateway_error_response(error: GatewayRequestError):
    return JsonResponse({
        'status': 'error',
        'message': f'WhatsApp host error: {error.failure.message}',
        'transient': error.failure.transient,
    }, status=502)


# API Endpoints for the instance lifecycle

@require_POST
@agent_owner_required
def create_instance_api(request: HttpRequest, agent: Agent):
    """Create the agent's WhatsApp instance"""
    if request.content_type == 'application/json' and request.body:
        try:
            phone_number = str(json.loads(request.body.decode('utf-8')).get('phone_number') or '').strip()
        except (UnicodeDecodeError, json.JSONDecodeError, AttributeError):
            return JsonResponse({'status': 'error', 'message': 'Invalid JSON body'}, status=400)
    else:
        phone_number = request.POST.get('phone_number', '').strip()

    logger.info(f"Instance creation requested by {request.user.username} for agent {agent.id}")
    try:
        snapshot = connection_manager.create_instance(agent.id, phone_number)
    except InstanceAlreadyExists as e:
        return JsonResponse({
            'status': 'error',
            'message': 'This agent already has a WhatsApp instance. Delete it before creating a new one.',
            'instance_name': e.instance_name,
        }, status=409)
    except GatewayRequestError as e:
        return _gateway_error_response(e)
    except Exception as e:
        logger.error(f"Unexpected error creating instance for agent {agent.id}: {str(e)}", exc_info=True)
        return JsonResponse({'status': 'error', 'message': 'Internal server error'}, status=500)

    return _status_response(snapshot, status=201)


@require_POST
@agent_owner_required
def activate_instance_api(request: HttpRequest, agent: Agent):
    """Request a fresh QR code for pairing"""
    try:
        snapshot = connection_manager.activate_instance(agent.id)
    except GatewayRequestError as e:
        return _gateway_error_response(e)
    except Exception as e:
        logger.error(f"Error activating instance for agent {agent.id}: {str(e)}", exc_info=True)
        return JsonResponse({'status': 'error', 'message': 'An error occurred while requesting QR code.'}, status=500)

    if not snapshot.exists:
        return JsonResponse({'status': 'error', 'message': 'No instance found'}, status=404)
    return _status_response(snapshot)


@require_http_methods(["POST", "DELETE"])
@agent_owner_required
def delete_instance_api(request: HttpRequest, agent: Agent):
    """Delete the instance; deleting a missing instance still succeeds"""
    try:
        result = connection_manager.delete_instance(agent.id)
    except Exception as e:
        logger.error(f"Error deleting instance for agent {agent.id}: {str(e)}", exc_info=True)
        return JsonResponse({'status': 'error', 'message': 'An error occurred while deleting.'}, status=500)

    return JsonResponse({'status': 'success', **result.model_dump()})


@require_POST
@agent_owner_required
def refresh_status_api(request: HttpRequest, agent: Agent):
    try:
        snapshot = connection_manager.refresh_status(agent.id)
    except Exception as e:
        logger.error(f"Error refreshing status for agent {agent.id}: {str(e)}", exc_info=True)
        return JsonResponse({'status': 'error', 'message': 'Internal server error'}, status=500)
    return _status_response(snapshot)


@require_GET
@agent_owner_required
def instance_status_api(request: HttpRequest, agent: Agent):
    return _status_response(connection_manager.get_status(agent.id))


def _event_stream(subscription, heartbeat):
    try:
        while True:
            snapshot = subscription.next(timeout=heartbeat)
            if snapshot is None:
                if subscription.closed:
                    break
                # Comment lines keep proxies from closing an idle stream
                yield ": keep-alive\n\n"
                continue
            yield f"event: status\ndata: {json.dumps(snapshot.to_dict())}\n\n"
            if not snapshot.exists:
                break
    finally:
        subscription.close()


@require_GET
@agent_owner_required
def instance_events_api(request: HttpRequest, agent: Agent):
    """Server-sent events stream of the agent's instance snapshots"""
    subscription = connection_manager.subscribe_status(agent.id)
    response = StreamingHttpResponse(
        _event_stream(subscription, settings.WHATSAPP_OBSERVER_HEARTBEAT),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response


@require_GET
@login_required_json
def instances_overview_api(request: HttpRequest):
    """Status of every agent owned by the current user"""
    agents = list(Agent.objects.filter(user=request.user))
    snapshots = connection_manager.get_statuses([agent.id for agent in agents])
    return JsonResponse({
        'status': 'success',
        'instances': [
            {'agent_id': agent.id, 'agent_name': agent.name, **snapshot.to_dict()}
            for agent, snapshot in zip(agents, snapshots)
        ],
    })
