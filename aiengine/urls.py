"""
URL configuration for the AI Engine application.

Only the inbound Evolution API webhook lives here.
"""

from django.urls import path
from . import views

app_name = 'aiengine'

urlpatterns = [
    path('webhook/', views.EvolutionWebhookView.as_view(), name='evolution_webhook'),
]
