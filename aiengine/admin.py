from django.contrib import admin

from .models import WebhookData, Agent


@admin.register(Agent)
class AgentAdmin(admin.ModelAdmin):
    list_display = ['name', 'user', 'is_active', 'created_at']
    list_filter = ['is_active', 'created_at']
    search_fields = ['name', 'user__username', 'user__email']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(WebhookData)
class WebhookDataAdmin(admin.ModelAdmin):
    """Read-only admin for WebhookData"""

    list_display = [
        'message_id',
        'instance',
        'push_name',
        'remote_jid',
        'message_type',
        'received_at',
        'is_processed',
        'served_from_cache',
    ]

    list_filter = [
        'instance',
        'message_type',
        'is_processed',
        'served_from_cache',
        'received_at'
    ]

    search_fields = [
        'message_id',
        'push_name',
        'remote_jid',
        'conversation'
    ]

    readonly_fields = [
        'message_id',
        'agent',
        'event',
        'instance',
        'push_name',
        'remote_jid',
        'conversation',
        'message_type',
        'date_time',
        'received_at',
        'is_processed',
        'served_from_cache',
        'response_text',
        'processing_error'
    ]

    ordering = ['-received_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
