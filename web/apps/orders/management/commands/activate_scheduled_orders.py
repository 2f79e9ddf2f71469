"""Release scheduled orders to the kitchen once they are due.

Meant to run every minute from cron or a scheduler container::

    python manage.py activate_scheduled_orders

Orders are activated when ``scheduled_for`` falls within
``ORDERS_ACTIVATION_LEAD_MINUTES`` of now. Running it concurrently is safe:
an order activated by another worker is skipped.
"""

from django.core.management.base import BaseCommand

from apps.orders import providers


class Command(BaseCommand):
    help = "Activate scheduled orders whose delivery time is within the activation lead."

    def handle(self, *args, **options):
        activated = providers.get_lifecycle_service().activate_due()
        for order in activated:
            self.stdout.write(f"activated order #{order.number} ({order.id})")
        self.stdout.write(self.style.SUCCESS(f"{len(activated)} order(s) activated"))
