from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('aiengine', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='InstanceRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('instance_name', models.CharField(max_length=255, unique=True, verbose_name='Instance Name')),
                ('state', models.CharField(choices=[('NONE', 'Not configured'), ('CREATED', 'Created'), ('AWAITING_QR_SCAN', 'Awaiting QR scan'), ('CONNECTED', 'Connected'), ('DISCONNECTED', 'Disconnected'), ('ERROR', 'Error')], default='CREATED', max_length=32, verbose_name='State')),
                ('qr_code', models.TextField(blank=True, help_text='Base64 QR image, only while awaiting a scan', null=True, verbose_name='QR Code')),
                ('qr_issued_at', models.DateTimeField(blank=True, null=True, verbose_name='QR Issued At')),
                ('qr_issue_count', models.IntegerField(default=0, help_text='QR codes issued since the last activation', verbose_name='QR Issue Count')),
                ('phone_number', models.CharField(blank=True, default='', max_length=32, verbose_name='Phone Number')),
                ('error_detail', models.TextField(blank=True, help_text='Raw gateway value kept for diagnostics', null=True, verbose_name='Error Detail')),
                ('last_event_source', models.CharField(choices=[('user', 'User action'), ('webhook', 'Webhook'), ('poll', 'Status poll')], default='user', max_length=16)),
                ('last_event_at', models.DateTimeField(verbose_name='Last Event At')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created At')),
                ('updated_at', models.DateTimeField(verbose_name='Updated At')),
                ('agent', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='whatsapp_instance', to='aiengine.agent')),
            ],
            options={
                'verbose_name': 'WhatsApp Instance',
                'verbose_name_plural': 'WhatsApp Instances',
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(('qr_code__isnull', False), ('state', 'AWAITING_QR_SCAN'))
                            | models.Q(models.Q(('state', 'AWAITING_QR_SCAN'), _negated=True), ('qr_code__isnull', True))
                        ),
                        name='qr_code_only_while_awaiting_scan',
                    ),
                ],
            },
        ),
    ]
