import logging

from django.dispatch import receiver

from order.models import Order
from order.signals import order_fulfilled
from payment.services.ledger import EarningsLedger

logger = logging.getLogger(__name__)


@receiver(order_fulfilled, sender=Order, dispatch_uid="payment.record_order_earnings")
def _record_earnings_on_fulfillment(sender, order: Order, **kwargs):
    # Runs inside the fulfillment transaction; raising here rolls the order back too.
    earnings = EarningsLedger.record_order_earnings(order)
    logger.info("Order %s fulfilled: %s earnings recorded for vendor=%s", order.order_number, len(earnings), order.vendor_id)
