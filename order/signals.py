from django.dispatch import Signal

# Sent inside the fulfillment transaction with kwargs: order, vendor_id, items.
# A receiver that raises rolls the fulfillment back.
order_fulfilled = Signal()
