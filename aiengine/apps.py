from django.apps import AppConfig


class AiengineConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'aiengine'
    verbose_name = 'AI Engine'
