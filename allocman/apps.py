"""Django app configuration for Allocman."""

from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class AllocmanConfig(AppConfig):
    """Configuration for Allocman app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "allocman"
    verbose_name = _("Inventory Allocation")
