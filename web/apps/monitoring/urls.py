from django.urls import path

from .api import health_view, live_view

urlpatterns = [
    path("health/", health_view, name="health"),
    path("livez/", live_view, name="livez"),
]
