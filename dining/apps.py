# dining/apps.py

from django.apps import AppConfig
import logging


class DiningConfig(AppConfig):
    """App configuration for the dining application."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'dining'
    verbose_name = "Dining"

    def ready(self):
        """
        Import signal handlers once the app registry is loaded, so order
        saves keep their table in sync.
        """
        try:
            import dining.signals  # noqa: F401
            logging.getLogger(__name__).info("dining.signals module loaded.")
        except Exception as e:
            logging.getLogger(__name__).exception(f"Failed to import dining.signals: {e}")
            raise
