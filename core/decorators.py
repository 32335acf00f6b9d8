import logging
from functools import wraps

from django.http import JsonResponse

logger = logging.getLogger('core.decorators')


def login_required_json(view_func):
    """
    Decorator that requires an authenticated user.
    API endpoints answer 401 JSON instead of redirecting to the login page.
    """
    @wraps(view_func)
    def _wrapped_view(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({'status': 'error', 'message': 'Authentication required'}, status=401)
        return view_func(request, *args, **kwargs)

    return _wrapped_view


def agent_owner_required(view_func):
    """
    Decorator that requires the ``agent_id`` URL argument to name an agent
    owned by the current user. The agent is handed to the view as ``agent``.
    """
    @wraps(view_func)
    def _wrapped_view(request, agent_id, *args, **kwargs):
        from aiengine.models import Agent

        if not request.user.is_authenticated:
            return JsonResponse({'status': 'error', 'message': 'Authentication required'}, status=401)

        agent = Agent.objects.filter(pk=agent_id, user=request.user).first()
        if agent is None:
            logger.warning(f"User {request.user.username} tried to access agent {agent_id} they do not own")
            return JsonResponse({'status': 'error', 'message': 'Agent not found'}, status=404)

        return view_func(request, agent, *args, **kwargs)

    return _wrapped_view
