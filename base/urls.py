"""
URL configuration for the Wozap connections project.
"""
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('aiengine/', include('aiengine.urls')),
    path('connections/', include('connections.urls')),
]
