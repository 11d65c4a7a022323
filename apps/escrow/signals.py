from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import Signal, receiver

from . import conf
from .models import Wallet

# sent after the transaction commits; kwargs: order, action, previous_status, actor
order_transitioned = Signal()


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def ensure_seller_wallet(sender, instance, created, **kwargs):
    if instance.role == "SELLER":
        Wallet.objects.get_or_create(user=instance,
                                     defaults={"currency": conf.currency_for_country(instance.country)})
