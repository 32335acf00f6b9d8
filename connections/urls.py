from django.urls import path

from .views import (
    create_instance_api,
    activate_instance_api,
    delete_instance_api,
    refresh_status_api,
    instance_status_api,
    instance_events_api,
    instances_overview_api,
)

app_name = 'connections'

urlpatterns = [
    # Per-agent instance lifecycle
    path('agents/<int:agent_id>/instance/', create_instance_api, name='create_instance'),
    path('agents/<int:agent_id>/instance/connect/', activate_instance_api, name='activate_instance'),
    path('agents/<int:agent_id>/instance/delete/', delete_instance_api, name='delete_instance'),
    path('agents/<int:agent_id>/instance/refresh/', refresh_status_api, name='refresh_status'),
    path('agents/<int:agent_id>/instance/status/', instance_status_api, name='instance_status'),
    path('agents/<int:agent_id>/instance/events/', instance_events_api, name='instance_events'),

    path('instances/status/', instances_overview_api, name='instances_overview'),
]
