from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User
from order.models import Order, OrderItem
from order.services import OrderFulfillmentError, OrderService
from order.signals import order_fulfilled
from payment.models import VendorEarning
from payment.services.ledger import EarningsLedger
from vendor.models import Vendor


class OrderTestMixin:
    def make_vendor(self, email="vendor@example.com"):
        owner = User.objects.create_user(email=email, password="Pass123!", role=User.Role.VENDOR)
        return Vendor.objects.create(
            owner=owner,
            business_name="Fresh Farm",
            contact_name="Akinyi",
            contact_email=email,
        )

    def make_order(self, vendor, customer, status=Order.Status.READY_FOR_PICKUP, items=None):
        items = items or [{"product_name": "Tomatoes", "price": Decimal("250.00"), "quantity": 4}]
        return OrderService.create_order(customer=customer, vendor=vendor, items=items, status=status)


class OrderServiceTests(OrderTestMixin, TestCase):
    def setUp(self):
        self.vendor = self.make_vendor()
        self.customer = User.objects.create_user(email="buyer@example.com", password="Pass123!")

    def test_create_order_snapshots_item_totals(self):
        order = self.make_order(
            self.vendor,
            self.customer,
            items=[
                {"product_name": "Tomatoes", "price": Decimal("250.00"), "quantity": 4},
                {"product_name": "Onions", "price": Decimal("33.33"), "quantity": 3},
            ],
        )

        self.assertTrue(order.order_number.startswith("ORD-"))
        self.assertEqual(order.subtotal, Decimal("1099.99"))
        self.assertEqual(order.total_amount, Decimal("1099.99"))
        onions = order.items.get(product_name="Onions")
        self.assertEqual(onions.total, Decimal("99.99"))
        self.assertEqual(onions.gross_amount, Decimal("99.99"))

    def test_fulfill_order_sends_signal_with_items(self):
        order = self.make_order(self.vendor, self.customer)
        received = []

        def receiver(sender, order, vendor_id, items, **kwargs):
            received.append((order.pk, vendor_id, [i.pk for i in items]))

        order_fulfilled.connect(receiver, dispatch_uid="test-order-fulfilled")
        try:
            OrderService.fulfill_order(order, actor=self.vendor.owner)
        finally:
            order_fulfilled.disconnect(dispatch_uid="test-order-fulfilled")

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.FULFILLED)
        self.assertIsNotNone(order.fulfilled_at)
        self.assertEqual(received, [(order.pk, self.vendor.pk, [order.items.get().pk])])

    def test_fulfill_requires_ready_or_delivered(self):
        order = self.make_order(self.vendor, self.customer, status=Order.Status.PROCESSING)

        with self.assertRaisesMessage(OrderFulfillmentError, "ready for pickup or delivered"):
            OrderService.fulfill_order(order)

    def test_fulfill_from_delivered_is_allowed(self):
        order = self.make_order(self.vendor, self.customer, status=Order.Status.DELIVERED)

        OrderService.fulfill_order(order)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.FULFILLED)

    def test_fulfill_twice_is_rejected(self):
        order = self.make_order(self.vendor, self.customer)
        OrderService.fulfill_order(order)

        with self.assertRaisesMessage(OrderFulfillmentError, "already fulfilled"):
            OrderService.fulfill_order(order)

    def test_fulfill_rejects_order_without_items(self):
        order = self.make_order(self.vendor, self.customer)
        order.items.all().delete()

        with self.assertRaisesMessage(OrderFulfillmentError, "no items"):
            OrderService.fulfill_order(order)

    def test_fulfill_rejects_zero_priced_item(self):
        order = self.make_order(self.vendor, self.customer)
        OrderItem.objects.filter(order=order).update(price=Decimal("0.00"))

        with self.assertRaisesMessage(OrderFulfillmentError, "Invalid price"):
            OrderService.fulfill_order(order)

    def test_receiver_failure_rolls_back_fulfillment(self):
        order = self.make_order(self.vendor, self.customer)

        def broken_receiver(sender, **kwargs):
            raise RuntimeError("ledger unavailable")

        order_fulfilled.connect(broken_receiver, dispatch_uid="test-broken-receiver")
        try:
            with patch.object(EarningsLedger, "record_order_earnings", wraps=EarningsLedger.record_order_earnings) as record:
                with self.assertRaises(RuntimeError):
                    OrderService.fulfill_order(order)
        finally:
            order_fulfilled.disconnect(dispatch_uid="test-broken-receiver")

        record.assert_called_once()

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.READY_FOR_PICKUP)
        self.assertIsNone(order.fulfilled_at)
        self.assertFalse(VendorEarning.objects.filter(order=order).exists())
        self.vendor.refresh_from_db()
        self.assertEqual(self.vendor.total_earnings, Decimal("0.00"))
        self.assertEqual(self.vendor.pending_balance, Decimal("0.00"))
        self.assertEqual(self.vendor.available_balance, Decimal("0.00"))


class OrderApiTests(OrderTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.vendor = self.make_vendor()
        self.customer = User.objects.create_user(email="buyer@example.com", password="Pass123!")

    def test_customer_creates_order(self):
        self.client.force_authenticate(self.customer)
        resp = self.client.post(
            "/order/create/",
            {
                "vendor_id": str(self.vendor.id),
                "items": [{"product_name": "Kales", "price": "20.00", "quantity": 5}],
            },
            format="json",
        )
        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertEqual(resp.data["total_amount"], "100.00")
        self.assertEqual(resp.data["status"], Order.Status.PENDING)

    def test_create_order_rejects_empty_items(self):
        self.client.force_authenticate(self.customer)
        resp = self.client.post(
            "/order/create/",
            {"vendor_id": str(self.vendor.id), "items": []},
            format="json",
        )
        self.assertEqual(resp.status_code, 400)

    def test_vendor_fulfills_own_order(self):
        order = self.make_order(self.vendor, self.customer)
        self.client.force_authenticate(self.vendor.owner)

        resp = self.client.post(f"/order/orders/{order.id}/fulfill/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["order"]["status"], Order.Status.FULFILLED)

    def test_customer_cannot_fulfill(self):
        order = self.make_order(self.vendor, self.customer)
        self.client.force_authenticate(self.customer)

        resp = self.client.post(f"/order/orders/{order.id}/fulfill/")
        self.assertEqual(resp.status_code, 403)

    def test_fulfill_wrong_status_returns_400(self):
        order = self.make_order(self.vendor, self.customer, status=Order.Status.PENDING)
        self.client.force_authenticate(self.vendor.owner)

        resp = self.client.post(f"/order/orders/{order.id}/fulfill/")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("detail", resp.data)

    @patch("order.views.OrderService.fulfill_order")
    def test_fulfill_missing_order_returns_404(self, mock_fulfill):
        self.client.force_authenticate(self.vendor.owner)

        resp = self.client.post("/order/orders/00000000-0000-0000-0000-000000000000/fulfill/")
        self.assertEqual(resp.status_code, 404)
        mock_fulfill.assert_not_called()

    def test_vendor_lists_orders_by_status(self):
        self.make_order(self.vendor, self.customer)
        self.make_order(self.vendor, self.customer, status=Order.Status.PENDING)
        self.client.force_authenticate(self.vendor.owner)

        resp = self.client.get(f"/order/vendor/{self.vendor.id}/orders/", {"status": "pending"})
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(len(resp.data), 1)
