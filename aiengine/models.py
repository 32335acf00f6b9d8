from django.contrib.auth.models import User
from django.db import models
from django.utils.translation import gettext_lazy as _


class Agent(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, null=True, blank=True, related_name='owned_agents')
    name = models.CharField(max_length=255, default="WozapAutoAgent", null=False, blank=False)
    description = models.TextField(default="WozapAutoAgent is a smart AI agent that will help you answer your WhatsApp queries.", blank=True)
    system_prompt = models.TextField(null=False, blank=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return self.name


class WebhookData(models.Model):
    """
    Ledger of inbound WhatsApp messages, one row per gateway message id.
    The unique message_id is what makes repeated webhook deliveries harmless.
    """
    message_id = models.CharField(_("Message ID"), max_length=255, unique=True)
    agent = models.ForeignKey(Agent, on_delete=models.SET_NULL, null=True, blank=True, related_name='webhook_messages')
    event = models.CharField(max_length=64)
    instance = models.CharField(max_length=255)
    remote_jid = models.CharField(max_length=255)
    push_name = models.CharField(max_length=255, blank=True, default='')
    conversation = models.TextField(blank=True, default='')
    message_type = models.CharField(max_length=64, blank=True, default='')
    date_time = models.DateTimeField(null=True, blank=True, help_text="Timestamp reported by the gateway")
    received_at = models.DateTimeField(_("Received At"), db_index=True)
    is_processed = models.BooleanField(default=False)
    served_from_cache = models.BooleanField(default=False)
    response_text = models.TextField(null=True, blank=True)
    processing_error = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ['-received_at']
        verbose_name = 'Webhook Data'
        verbose_name_plural = 'Webhook Data'
        indexes = [
            models.Index(fields=['is_processed'], name='webhookdata_processed_idx'),
        ]

    def __str__(self):
        return f"{self.message_id} - {self.received_at}"
