import logging
import uuid

from django.db import transaction
from django.utils import timezone

from .models import Order, OrderItem
from .signals import order_fulfilled

logger = logging.getLogger(__name__)


class OrderFulfillmentError(Exception):
    pass


class OrderService:

    @staticmethod
    def _generate_order_number():
        while True:
            candidate = f"ORD-{uuid.uuid4().hex[:12].upper()}"
            if not Order.objects.filter(order_number=candidate).exists():
                return candidate

    @staticmethod
    @transaction.atomic
    def create_order(customer, vendor, items, commission_percentage_override=None, status=Order.Status.PENDING):
        """
        items: list of dicts like:
        [{"product_name": "Sukuma", "sku": "SK-1", "price": Decimal("50.00"), "quantity": 2}]
        """
        if not items:
            raise OrderFulfillmentError("Order must have at least one item")

        order = Order.objects.create(
            order_number=OrderService._generate_order_number(),
            customer=customer,
            vendor=vendor,
            status=status,
            subtotal=0,
            total_amount=0,
            commission_percentage_override=commission_percentage_override,
        )

        subtotal = 0
        for item in items:
            order_item = OrderItem(
                order=order,
                product_name=item["product_name"],
                sku=item.get("sku", ""),
                price=item["price"],
                quantity=item["quantity"],
                total=0,
            )
            order_item.total = order_item.gross_amount
            order_item.save()
            subtotal += order_item.total

        order.subtotal = subtotal
        order.total_amount = subtotal
        order.save(update_fields=["subtotal", "total_amount"])
        return order

    @staticmethod
    @transaction.atomic
    def fulfill_order(order, actor=None):
        order = Order.objects.select_for_update().get(pk=order.pk)

        if order.status == Order.Status.FULFILLED:
            raise OrderFulfillmentError("Order is already fulfilled")
        if order.status not in Order.FULFILLABLE_STATUSES:
            raise OrderFulfillmentError(
                f"Order must be ready for pickup or delivered to fulfill (current status: {order.status})"
            )

        items = list(order.items.all())
        if not items:
            raise OrderFulfillmentError("Order has no items")
        for item in items:
            if item.price is None or item.price <= 0:
                raise OrderFulfillmentError(f"Invalid price for item {item.product_name}")
            if not item.quantity or item.quantity <= 0:
                raise OrderFulfillmentError(f"Invalid quantity for item {item.product_name}")

        order.status = Order.Status.FULFILLED
        order.fulfilled_at = timezone.now()
        order.save(update_fields=["status", "fulfilled_at", "updated_at"])

        order_fulfilled.send(sender=Order, order=order, vendor_id=order.vendor_id, items=items)

        logger.info(
            "Order %s fulfilled by %s (%s items)",
            order.order_number,
            getattr(actor, "email", None) or "system",
            len(items),
        )
        return order
