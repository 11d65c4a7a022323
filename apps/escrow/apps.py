from django.apps import AppConfig


class EscrowConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.escrow'
    verbose_name = 'Escrow Orders & Payouts'

    def ready(self):
        # import signals to ensure they are registered
        from . import signals  # noqa
