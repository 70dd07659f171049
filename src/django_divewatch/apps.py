"""Django app configuration for django-divewatch."""

from django.apps import AppConfig


class DjangoDivewatchConfig(AppConfig):
    """App configuration for django-divewatch."""

    name = "django_divewatch"
    verbose_name = "Dive Watch"
    default_auto_field = "django.db.models.BigAutoField"
