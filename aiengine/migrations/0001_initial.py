from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Agent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(default='WozapAutoAgent', max_length=255)),
                ('description', models.TextField(blank=True, default='WozapAutoAgent is a smart AI agent that will help you answer your WhatsApp queries.')),
                ('system_prompt', models.TextField()),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='owned_agents', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at'],
            },
        ),
        migrations.CreateModel(
            name='WebhookData',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('message_id', models.CharField(max_length=255, unique=True, verbose_name='Message ID')),
                ('event', models.CharField(max_length=64)),
                ('instance', models.CharField(max_length=255)),
                ('remote_jid', models.CharField(max_length=255)),
                ('push_name', models.CharField(blank=True, default='', max_length=255)),
                ('conversation', models.TextField(blank=True, default='')),
                ('message_type', models.CharField(blank=True, default='', max_length=64)),
                ('date_time', models.DateTimeField(blank=True, help_text='Timestamp reported by the gateway', null=True)),
                ('received_at', models.DateTimeField(db_index=True, verbose_name='Received At')),
                ('is_processed', models.BooleanField(default=False)),
                ('served_from_cache', models.BooleanField(default=False)),
                ('response_text', models.TextField(blank=True, null=True)),
                ('processing_error', models.TextField(blank=True, null=True)),
                ('agent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='webhook_messages', to='aiengine.agent')),
            ],
            options={
                'verbose_name': 'Webhook Data',
                'verbose_name_plural': 'Webhook Data',
                'ordering': ['-received_at'],
                'indexes': [models.Index(fields=['is_processed'], name='webhookdata_processed_idx')],
            },
        ),
    ]
