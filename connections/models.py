from datetime import datetime
from typing import Optional

from django.db import models
from django.utils.translation import gettext_lazy as _
from pydantic import BaseModel, ConfigDict

from aiengine.models import Agent


class InstanceState(models.TextChoices):
    NONE = "NONE", _("Not configured")
    CREATED = "CREATED", _("Created")
    AWAITING_QR_SCAN = "AWAITING_QR_SCAN", _("Awaiting QR scan")
    CONNECTED = "CONNECTED", _("Connected")
    DISCONNECTED = "DISCONNECTED", _("Disconnected")
    ERROR = "ERROR", _("Error")


class EventSource(models.TextChoices):
    USER = "user", _("User action")
    WEBHOOK = "webhook", _("Webhook")
    POLL = "poll", _("Status poll")


class InstanceRecord(models.Model):
    """
    The one gateway instance an agent may own. NONE is never stored:
    an agent without a row has no instance.
    """
    agent = models.OneToOneField(Agent, on_delete=models.CASCADE, related_name='whatsapp_instance')
    instance_name = models.CharField(_("Instance Name"), max_length=255, unique=True)
    state = models.CharField(
        _("State"),
        max_length=32,
        choices=InstanceState.choices,
        default=InstanceState.CREATED,
    )
    qr_code = models.TextField(_("QR Code"), null=True, blank=True, help_text="Base64 QR image, only while awaiting a scan")
    qr_issued_at = models.DateTimeField(_("QR Issued At"), null=True, blank=True)
    qr_issue_count = models.IntegerField(_("QR Issue Count"), default=0, help_text="QR codes issued since the last activation")
    phone_number = models.CharField(_("Phone Number"), max_length=32, blank=True, default='')
    error_detail = models.TextField(_("Error Detail"), null=True, blank=True, help_text="Raw gateway value kept for diagnostics")
    last_event_source = models.CharField(max_length=16, choices=EventSource.choices, default=EventSource.USER)
    last_event_at = models.DateTimeField(_("Last Event At"))
    created_at = models.DateTimeField(_("Created At"), auto_now_add=True)
    updated_at = models.DateTimeField(_("Updated At"))

    class Meta:
        verbose_name = _("WhatsApp Instance")
        verbose_name_plural = _("WhatsApp Instances")
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(state=InstanceState.AWAITING_QR_SCAN, qr_code__isnull=False)
                    | (~models.Q(state=InstanceState.AWAITING_QR_SCAN) & models.Q(qr_code__isnull=True))
                ),
                name='qr_code_only_while_awaiting_scan',
            ),
        ]

    def __str__(self):
        return f"{self.instance_name} ({self.state}) for agent {self.agent_id}"


STATUS_DISPLAY = {
    InstanceState.NONE: (_("Not configured"), "gray"),
    InstanceState.CREATED: (_("Created"), "blue"),
    InstanceState.AWAITING_QR_SCAN: (_("Waiting for QR scan"), "yellow"),
    InstanceState.CONNECTED: (_("Connected"), "green"),
    InstanceState.DISCONNECTED: (_("Disconnected"), "red"),
    InstanceState.ERROR: (_("Error"), "red"),
}

CONNECTION_QUALITY = {
    InstanceState.CONNECTED: 'excellent',
    InstanceState.CREATED: 'good',
    InstanceState.AWAITING_QR_SCAN: 'good',
    InstanceState.DISCONNECTED: 'poor',
    InstanceState.ERROR: 'poor',
}


class InstanceSnapshot(BaseModel):
    """Immutable view of an InstanceRecord handed to readers."""
    model_config = ConfigDict(frozen=True)

    agent_id: int
    state: InstanceState
    instance_name: Optional[str] = None
    qr_code: Optional[str] = None
    qr_issued_at: Optional[datetime] = None
    qr_issue_count: int = 0
    phone_number: str = ''
    error_detail: Optional[str] = None
    last_event_source: Optional[str] = None
    last_event_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def none(cls, agent_id: int) -> 'InstanceSnapshot':
        """The explicit "no instance" marker."""
        return cls(agent_id=agent_id, state=InstanceState.NONE)

    @classmethod
    def from_record(cls, record: InstanceRecord) -> 'InstanceSnapshot':
        return cls(
            agent_id=record.agent_id,
            state=InstanceState(record.state),
            instance_name=record.instance_name,
            qr_code=record.qr_code,
            qr_issued_at=record.qr_issued_at,
            qr_issue_count=record.qr_issue_count,
            phone_number=record.phone_number,
            error_detail=record.error_detail,
            last_event_source=record.last_event_source,
            last_event_at=record.last_event_at,
            updated_at=record.updated_at,
        )

    @property
    def exists(self) -> bool:
        return self.state != InstanceState.NONE

    @property
    def is_connected(self) -> bool:
        return self.state == InstanceState.CONNECTED

    @property
    def has_qr_code(self) -> bool:
        return bool(self.qr_code) and self.state == InstanceState.AWAITING_QR_SCAN

    @property
    def needs_attention(self) -> bool:
        return self.state in (InstanceState.DISCONNECTED, InstanceState.ERROR)

    @property
    def connection_quality(self) -> str:
        return CONNECTION_QUALITY.get(self.state, 'unknown')

    @property
    def status_label(self) -> str:
        return str(STATUS_DISPLAY[self.state][0])

    @property
    def status_color(self) -> str:
        return STATUS_DISPLAY[self.state][1]

    def to_dict(self) -> dict:
        data = self.model_dump(mode='json')
        data.update({
            'status_display': {'label': self.status_label, 'color': self.status_color},
            'connection_quality': self.connection_quality,
            'has_qr_code': self.has_qr_code,
            'needs_attention': self.needs_attention,
            'is_connected': self.is_connected,
        })
        return data


class GatewayFailure(BaseModel):
    """Why a gateway call failed; transient failures are retried by polling."""
    message: str
    transient: bool = False
    status_code: Optional[int] = None
    not_found: bool = False

    def __str__(self):
        return self.message


class GatewayQRCode(BaseModel):
    pairing_code: Optional[str] = None
    code: str = ''
    base64: str
    count: int = 0


class GatewayStatus(BaseModel):
    instance_name: str
    state: str  # raw gateway vocabulary, translated by map_gateway_state
    qr_code: Optional[GatewayQRCode] = None


class GatewayInstance(BaseModel):
    instance_name: str
    instance_id: str = ''
    status: str = ''
    qr_code: Optional[GatewayQRCode] = None
