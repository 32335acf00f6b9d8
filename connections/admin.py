from django.contrib import admin

from .models import InstanceRecord


@admin.register(InstanceRecord)
class InstanceRecordAdmin(admin.ModelAdmin):
    """
    Read-mostly: state changes go through the state store so observers
    and pollers hear about them. Deleting here does not reach the gateway.
    """

    list_display = [
        'instance_name',
        'agent',
        'state',
        'qr_issue_count',
        'last_event_source',
        'last_event_at',
        'updated_at',
    ]

    list_filter = ['state', 'last_event_source', 'created_at']
    search_fields = ['instance_name', 'agent__name', 'agent__user__username', 'phone_number']

    readonly_fields = [
        'agent',
        'instance_name',
        'state',
        'qr_code',
        'qr_issued_at',
        'qr_issue_count',
        'phone_number',
        'error_detail',
        'last_event_source',
        'last_event_at',
        'created_at',
        'updated_at',
    ]

    ordering = ['-updated_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
