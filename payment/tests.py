import hashlib
import hmac
import json
import os
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.contrib.admin.sites import site as admin_site
from django.core.management import call_command
from django.test import RequestFactory, SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework.test import APIClient

from account.models import User
from notifications.models import Notification
from order.models import Order
from order.services import OrderService
from payment.models import PayoutHistory, PayoutRequest, PlatformSetting, VendorEarning, WebhookLog
from payment.services.commission import calculate_commission, from_minor_units, to_minor_units
from payment.services.errors import (
    AlreadyPaidError,
    ConcurrentModificationError,
    ImmutableRecordError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateError,
    ObjectNotFoundError,
    PaymentConfigurationError,
    PaymentGatewayError,
)
from payment.services.ledger import EarningsLedger
from payment.services.payout import PayoutWorkflow
from payment.services.paystack import PaystackClient, PayoutTransferService
from payment.services.platform_settings import COMMISSION_KEY, PlatformSettingsService
from payment.services.reports import platform_earnings_report
from vendor.models import Vendor


class SettlementTestMixin:
    """Builds vendors and fulfilled orders through the real order flow."""

    def make_vendor(self, email="vendor@example.com", **extra):
        owner = User.objects.create_user(email=email, password="Pass123!", role=User.Role.VENDOR)
        defaults = {
            "business_name": f"Shop {email.split('@')[0]}",
            "contact_name": "Njeri",
            "contact_email": email,
        }
        defaults.update(extra)
        return Vendor.objects.create(owner=owner, **defaults)

    def make_customer(self, email="buyer@example.com"):
        user = User.objects.filter(email=email).first()
        return user or User.objects.create_user(email=email, password="Pass123!")

    def fulfill(self, vendor, prices, commission=None):
        items = [{"product_name": f"Item {i}", "price": Decimal(p), "quantity": 1} for i, p in enumerate(prices)]
        order = OrderService.create_order(
            customer=self.make_customer(),
            vendor=vendor,
            items=items,
            status=Order.Status.READY_FOR_PICKUP,
            commission_percentage_override=commission,
        )
        return OrderService.fulfill_order(order)

    def fund(self, vendor, amount):
        """Credit `amount` of matured net earnings (zero commission order)."""
        self.fulfill(vendor, [amount], commission=Decimal("0.00"))
        vendor.refresh_from_db()
        return vendor

    def assertBalances(self, vendor, **expected):
        vendor.refresh_from_db()
        for field, value in expected.items():
            self.assertEqual(getattr(vendor, field), Decimal(value), field)
        self.assertTrue(vendor.balance_identity_holds(), "balance identity broken")


# -----------------------------
# Commission calculator
# -----------------------------
class CommissionCalculatorTests(SimpleTestCase):
    def test_twenty_percent_of_ten_thousand(self):
        result = calculate_commission(Decimal("10000"), Decimal("20"))

        self.assertEqual(result.platform_fee, Decimal("2000.00"))
        self.assertEqual(result.net_earnings, Decimal("8000.00"))
        self.assertEqual(result.gross_amount, Decimal("10000.00"))

    def test_fee_rounds_half_up_and_net_takes_remainder(self):
        result = calculate_commission("0.05", "50")

        self.assertEqual(result.platform_fee, Decimal("0.03"))
        self.assertEqual(result.net_earnings, Decimal("0.02"))

    def test_fee_plus_net_equals_gross(self):
        for gross, pct in [("99.99", "17.5"), ("1234.56", "33.33"), ("0.01", "20"), ("0", "20"), ("500", "0"), ("500", "100")]:
            result = calculate_commission(gross, pct)
            self.assertEqual(result.platform_fee + result.net_earnings, result.gross_amount, (gross, pct))

    def test_boundary_percentages(self):
        self.assertEqual(calculate_commission("250", "0").net_earnings, Decimal("250.00"))
        self.assertEqual(calculate_commission("250", "100").net_earnings, Decimal("0.00"))

    def test_invalid_inputs(self):
        for gross, pct in [("-1", "20"), ("100", "-0.01"), ("100", "100.01"), ("abc", "20"), ("NaN", "20"), ("100", "Infinity"), (None, "20")]:
            with self.assertRaises(InvalidInputError, msg=(gross, pct)):
                calculate_commission(gross, pct)

    def test_sub_cent_inputs_are_rejected_not_rounded(self):
        for gross, pct in [("100.005", "20"), ("0.001", "20"), ("100", "12.345"), ("100", "0.001")]:
            with self.assertRaises(InvalidInputError, msg=(gross, pct)):
                calculate_commission(gross, pct)

        result = calculate_commission("100.50", "12.5")
        self.assertEqual(result.gross_amount, Decimal("100.50"))
        self.assertEqual(result.platform_fee_percentage, Decimal("12.50"))

    def test_minor_units(self):
        self.assertEqual(to_minor_units("19.50"), 1950)
        self.assertEqual(to_minor_units(Decimal("2000")), 200000)
        self.assertEqual(from_minor_units(5000), Decimal("50.00"))


# -----------------------------
# Commission configuration
# -----------------------------
class PlatformSettingsTests(SettlementTestMixin, TestCase):
    @override_settings(PLATFORM_DEFAULT_COMMISSION_PERCENTAGE=Decimal("20.00"))
    def test_default_commission_when_unset(self):
        rate = PlatformSettingsService.current_commission()

        self.assertEqual(rate.percentage, Decimal("20.00"))
        self.assertIsNone(rate.version)
        self.assertEqual(rate.source, "default")

    def test_set_commission_bumps_version(self):
        first = PlatformSettingsService.set_commission_percentage("15")
        second = PlatformSettingsService.set_commission_percentage("12.5")

        self.assertEqual(first.version, 1)
        self.assertEqual(second.version, 2)
        self.assertEqual(PlatformSettingsService.current_commission().percentage, Decimal("12.50"))
        self.assertEqual(PlatformSetting.objects.get(key=COMMISSION_KEY).value, "12.50")

    def test_set_commission_rejects_out_of_range(self):
        with self.assertRaises(InvalidInputError):
            PlatformSettingsService.set_commission_percentage("150")
        self.assertFalse(PlatformSetting.objects.filter(key=COMMISSION_KEY).exists())

    def test_set_commission_rejects_sub_cent_percentage(self):
        PlatformSettingsService.set_commission_percentage("12.34")

        with self.assertRaises(InvalidInputError):
            PlatformSettingsService.set_commission_percentage("12.345")

        setting = PlatformSetting.objects.get(key=COMMISSION_KEY)
        self.assertEqual((setting.value, setting.version), ("12.34", 1))

    def test_invalid_stored_commission_is_configuration_error(self):
        PlatformSetting.objects.create(key=COMMISSION_KEY, value="lots", setting_type="number")

        with self.assertRaises(PaymentConfigurationError):
            PlatformSettingsService.current_commission()

    def test_order_override_wins(self):
        PlatformSettingsService.set_commission_percentage("15")
        order = Order(commission_percentage_override=Decimal("5.00"))

        rate = PlatformSettingsService.commission_for_order(order)
        self.assertEqual(rate.percentage, Decimal("5.00"))
        self.assertEqual(rate.source, "order_override")

    def test_rate_change_only_affects_future_earnings(self):
        vendor = self.make_vendor()
        PlatformSettingsService.set_commission_percentage("10")
        self.fulfill(vendor, ["1000.00"])

        PlatformSettingsService.set_commission_percentage("30")
        self.fulfill(vendor, ["1000.00"])

        old, new = VendorEarning.objects.filter(vendor=vendor).order_by("created_at")
        self.assertEqual((old.platform_fee_percentage, old.commission_version, old.net_earnings), (Decimal("10.00"), 1, Decimal("900.00")))
        self.assertEqual((new.platform_fee_percentage, new.commission_version, new.net_earnings), (Decimal("30.00"), 2, Decimal("700.00")))

    def test_generic_setting_update(self):
        PlatformSetting.objects.create(key="payout_minimum", value="100", setting_type="number")

        setting = PlatformSettingsService.set_value("payout_minimum", "250")
        self.assertEqual(setting.version, 2)
        self.assertEqual(PlatformSettingsService.get_value("payout_minimum"), Decimal("250"))

        with self.assertRaises(InvalidInputError):
            PlatformSettingsService.set_value("payout_minimum", "not a number")
        with self.assertRaises(ObjectNotFoundError):
            PlatformSettingsService.set_value("missing_key", "1")


# -----------------------------
# Earnings ledger
# -----------------------------
@override_settings(EARNINGS_HOLD_DAYS=0, PLATFORM_DEFAULT_COMMISSION_PERCENTAGE=Decimal("20.00"))
class EarningsLedgerTests(SettlementTestMixin, TestCase):
    def setUp(self):
        self.vendor = self.make_vendor()

    def _pending_order(self, price="1000.00"):
        return OrderService.create_order(
            customer=self.make_customer(),
            vendor=self.vendor,
            items=[{"product_name": "Basket", "price": Decimal(price), "quantity": 1}],
            status=Order.Status.READY_FOR_PICKUP,
        )

    @override_settings(EARNINGS_HOLD_DAYS=7)
    def test_record_earning_is_pending_during_hold(self):
        order = self._pending_order()
        item = order.items.get()
        now = timezone.now()

        earning = EarningsLedger.record_earning(
            self.vendor.pk, order.pk, item.pk, item.gross_amount, Decimal("20"), earning_date=now
        )

        self.assertEqual(earning.status, VendorEarning.Status.PENDING)
        self.assertEqual(earning.available_date, now + timedelta(days=7))
        self.assertEqual(earning.platform_fee + earning.net_earnings, earning.gross_amount)
        self.assertBalances(self.vendor, pending_balance="800.00", total_earnings="800.00", available_balance="0.00")

    def test_duplicate_earning_is_rejected(self):
        order = self._pending_order()
        item = order.items.get()
        EarningsLedger.record_earning(self.vendor.pk, order.pk, item.pk, item.gross_amount, Decimal("20"))

        with self.assertRaises(InvalidInputError):
            EarningsLedger.record_earning(self.vendor.pk, order.pk, item.pk, item.gross_amount, Decimal("20"))
        self.assertBalances(self.vendor, pending_balance="800.00", total_earnings="800.00")

    def test_record_earning_for_unknown_vendor(self):
        order = self._pending_order()
        item = order.items.get()
        with self.assertRaises(ObjectNotFoundError):
            EarningsLedger.record_earning(
                "00000000-0000-0000-0000-000000000000", order.pk, item.pk, "10", "20"
            )

    def test_fulfillment_with_no_hold_makes_earnings_available(self):
        self.fulfill(self.vendor, ["10000.00"])

        earning = VendorEarning.objects.get(vendor=self.vendor)
        self.assertEqual(earning.status, VendorEarning.Status.AVAILABLE)
        self.assertEqual(earning.platform_fee, Decimal("2000.00"))
        self.assertBalances(self.vendor, available_balance="8000.00", pending_balance="0.00", total_earnings="8000.00")
        self.assertTrue(
            Notification.objects.filter(user=self.vendor.owner, type=Notification.Type.EARNINGS_RECORDED).exists()
        )

    def test_failure_on_second_item_leaves_no_earnings_or_balances(self):
        order = OrderService.create_order(
            customer=self.make_customer(),
            vendor=self.vendor,
            items=[
                {"product_name": "Basket", "price": Decimal("300.00"), "quantity": 1},
                {"product_name": "Mat", "price": Decimal("200.00"), "quantity": 1},
            ],
            status=Order.Status.READY_FOR_PICKUP,
        )
        second = order.items.order_by("created_at").last()
        second.price = Decimal("-200.00")
        second.save(update_fields=["price"])

        with patch.object(EarningsLedger, "record_earning", wraps=EarningsLedger.record_earning) as record:
            with self.assertRaises(InvalidInputError):
                EarningsLedger.record_order_earnings(order)

        self.assertEqual(record.call_count, 2)
        self.assertFalse(VendorEarning.objects.filter(order=order).exists())
        self.assertBalances(
            self.vendor,
            total_earnings="0.00",
            pending_balance="0.00",
            available_balance="0.00",
        )
        self.assertFalse(Notification.objects.filter(type=Notification.Type.EARNINGS_RECORDED).exists())

    def test_record_order_earnings_skips_recorded_items(self):
        order = self.fulfill(self.vendor, ["100.00", "200.00"])

        again = EarningsLedger.record_order_earnings(order)

        self.assertEqual(again, [])
        self.assertEqual(VendorEarning.objects.filter(order=order).count(), 2)
        self.assertBalances(self.vendor, total_earnings="240.00")

    @override_settings(EARNINGS_HOLD_DAYS=3)
    def test_mature_pending_respects_as_of_and_is_idempotent(self):
        self.fulfill(self.vendor, ["500.00"])
        self.assertBalances(self.vendor, pending_balance="400.00", available_balance="0.00")

        early = EarningsLedger.mature_pending(self.vendor.pk, as_of=timezone.now() + timedelta(days=1))
        self.assertEqual(early.count, 0)

        as_of = timezone.now() + timedelta(days=4)
        first = EarningsLedger.mature_pending(self.vendor.pk, as_of=as_of)
        second = EarningsLedger.mature_pending(self.vendor.pk, as_of=as_of)

        self.assertEqual((first.count, first.amount), (1, Decimal("400.00")))
        self.assertEqual((second.count, second.amount), (0, Decimal("0.00")))
        self.assertBalances(self.vendor, pending_balance="0.00", available_balance="400.00")

    @override_settings(EARNINGS_HOLD_DAYS=3)
    def test_mature_all_covers_every_vendor(self):
        other = self.make_vendor(email="other@example.com")
        self.fulfill(self.vendor, ["100.00"])
        self.fulfill(other, ["50.00"])

        results = EarningsLedger.mature_all(as_of=timezone.now() + timedelta(days=3, minutes=1))

        self.assertEqual({r.vendor_id for r in results}, {self.vendor.pk, other.pk})
        self.assertBalances(self.vendor, available_balance="80.00")
        self.assertBalances(other, available_balance="40.00")

    def test_select_for_payout_is_fifo_and_stops_at_overflow(self):
        self.fulfill(self.vendor, ["300.00"], commission=Decimal("0"))
        self.fulfill(self.vendor, ["500.00"], commission=Decimal("0"))
        self.fulfill(self.vendor, ["200.00"], commission=Decimal("0"))

        picked = EarningsLedger.select_for_payout(self.vendor.pk, Decimal("700.00"))
        self.assertEqual([e.net_earnings for e in picked], [Decimal("300.00")])

        picked = EarningsLedger.select_for_payout(self.vendor.pk, Decimal("800.00"))
        self.assertEqual([e.net_earnings for e in picked], [Decimal("300.00"), Decimal("500.00")])

    def test_mark_paid_out(self):
        self.fund(self.vendor, "300.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "300.00")
        earning = VendorEarning.objects.get(vendor=self.vendor)

        updated = EarningsLedger.mark_paid_out([earning.pk], payout.pk)

        earning.refresh_from_db()
        self.assertEqual(updated, 1)
        self.assertEqual(earning.status, VendorEarning.Status.PAID_OUT)
        self.assertEqual(earning.payout_request_id, payout.pk)
        self.assertIsNotNone(earning.paid_out_at)

        with self.assertRaises(AlreadyPaidError):
            EarningsLedger.mark_paid_out([earning.pk], payout.pk)

    @override_settings(EARNINGS_HOLD_DAYS=5)
    def test_mark_paid_out_rejects_pending_earnings(self):
        self.fulfill(self.vendor, ["100.00"])
        payout = PayoutRequest.objects.create(
            vendor=self.vendor,
            requested_amount=Decimal("1.00"),
            available_balance=Decimal("0.00"),
            transfer_reference="payout_test_pending",
        )
        pending = VendorEarning.objects.filter(vendor=self.vendor, status=VendorEarning.Status.PENDING).first()

        with self.assertRaises(AlreadyPaidError):
            EarningsLedger.mark_paid_out([pending.pk], payout.pk)

    def test_mark_paid_out_rejects_unknown_or_foreign_earnings(self):
        other = self.make_vendor(email="other@example.com")
        self.fund(other, "100.00")
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        foreign = VendorEarning.objects.get(vendor=other)

        with self.assertRaises(InvalidInputError):
            EarningsLedger.mark_paid_out([foreign.pk], payout.pk)
        with self.assertRaises(InvalidInputError):
            EarningsLedger.mark_paid_out(["00000000-0000-0000-0000-000000000000"], payout.pk)
        with self.assertRaises(InvalidInputError):
            EarningsLedger.mark_paid_out([], payout.pk)

    @override_settings(EARNINGS_HOLD_DAYS=2)
    def test_vendor_summary_counts_orders(self):
        self.fulfill(self.vendor, ["100.00"])
        EarningsLedger.mature_all(as_of=timezone.now() + timedelta(days=3))
        self.fulfill(self.vendor, ["50.00", "25.00"])

        summary = EarningsLedger.vendor_summary(self.vendor)

        self.assertEqual(summary["confirmed_orders"], 1)
        self.assertEqual(summary["pending_orders"], 1)
        self.assertEqual(summary["available_balance"], Decimal("80.00"))
        self.assertEqual(summary["pending_balance"], Decimal("60.00"))
        self.assertIsNone(summary["last_payout_date"])

    def test_order_earnings_groups_by_order(self):
        order = self.fulfill(self.vendor, ["100.00", "50.00"])

        rows = EarningsLedger.order_earnings(self.vendor)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["order_number"], order.order_number)
        self.assertEqual(rows[0]["items"], 2)
        self.assertEqual(rows[0]["net_earnings"], Decimal("120.00"))
        self.assertEqual(rows[0]["statuses"], ["available"])


# -----------------------------
# Payout workflow
# -----------------------------
@override_settings(EARNINGS_HOLD_DAYS=0)
class PayoutWorkflowTests(SettlementTestMixin, TestCase):
    def setUp(self):
        self.vendor = self.make_vendor()
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")

    def test_request_full_balance_then_one_more(self):
        self.fund(self.vendor, "5000.00")

        payout = PayoutWorkflow.create_request(self.vendor.pk, "5000.00", reason="Rent")

        self.assertEqual(payout.status, PayoutRequest.Status.PENDING)
        self.assertEqual(payout.available_balance, Decimal("5000.00"))
        self.assertTrue(payout.transfer_reference.startswith("payout_"))
        self.assertBalances(self.vendor, available_balance="0.00", reserved_balance="5000.00")

        with self.assertRaises(InsufficientBalanceError):
            PayoutWorkflow.create_request(self.vendor.pk, "1.00")
        self.assertBalances(self.vendor, available_balance="0.00", reserved_balance="5000.00")
        self.assertEqual(PayoutRequest.objects.count(), 1)

    def test_request_amount_must_be_positive(self):
        self.fund(self.vendor, "100.00")
        for amount in ("0", "-5", "abc", "10.005"):
            with self.assertRaises(InvalidInputError):
                PayoutWorkflow.create_request(self.vendor.pk, amount)
        self.assertBalances(self.vendor, available_balance="100.00")

    def test_request_notifies_vendor_and_staff(self):
        self.fund(self.vendor, "100.00")

        PayoutWorkflow.create_request(self.vendor.pk, "40.00")

        self.assertTrue(Notification.objects.filter(user=self.vendor.owner, type="payout_requested").exists())
        self.assertTrue(Notification.objects.filter(user=self.admin, type="payout_request_received").exists())

    @patch("notifications.services.NotificationService.notify", side_effect=RuntimeError("push down"))
    def test_notification_failure_does_not_block_request(self, mock_notify):
        self.fund(self.vendor, "100.00")

        payout = PayoutWorkflow.create_request(self.vendor.pk, "40.00")

        self.assertEqual(payout.status, PayoutRequest.Status.PENDING)
        self.assertBalances(self.vendor, available_balance="60.00", reserved_balance="40.00")

    def test_reject_restores_available_balance(self):
        self.fund(self.vendor, "5000.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "3000.00")

        rejected = PayoutWorkflow.reject(payout.pk, self.admin, reason="Bank details unverified")

        self.assertEqual(rejected.status, PayoutRequest.Status.REJECTED)
        self.assertEqual(rejected.reviewed_by, self.admin)
        self.assertEqual(rejected.admin_notes, "Bank details unverified")
        self.assertBalances(self.vendor, available_balance="5000.00", reserved_balance="0.00")

    def test_reject_requires_reason(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")

        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.reject(payout.pk, self.admin, reason="  ")

    def test_approve_then_complete_with_fee(self):
        self.fund(self.vendor, "2000.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "2000.00")

        approved = PayoutWorkflow.approve(payout.pk, self.admin, admin_notes="ok")
        self.assertEqual(approved.status, PayoutRequest.Status.PROCESSING)
        self.assertEqual(approved.version, 2)
        self.assertBalances(self.vendor, reserved_balance="2000.00", available_balance="0.00")

        history = PayoutWorkflow.complete(payout.pk, "MPESA-REF-1", transaction_fee="50", completed_by=self.admin)

        self.assertEqual(history.net_amount, Decimal("1950.00"))
        self.assertEqual(history.transaction_fee, Decimal("50.00"))
        self.assertEqual(history.amount, Decimal("2000.00"))
        self.assertBalances(
            self.vendor,
            total_paid_out="1950.00",
            total_transaction_fees="50.00",
            reserved_balance="0.00",
            available_balance="0.00",
        )
        payout.refresh_from_db()
        self.assertEqual(payout.status, PayoutRequest.Status.COMPLETED)
        self.assertEqual(payout.actual_paid_amount, Decimal("1950.00"))
        self.assertEqual(payout.version, 3)
        self.assertEqual(
            list(VendorEarning.objects.filter(vendor=self.vendor).values_list("status", flat=True)),
            [VendorEarning.Status.PAID_OUT],
        )

    def test_history_sum_matches_total_paid_out(self):
        self.fund(self.vendor, "1000.00")
        self.fund(self.vendor, "600.00")
        for amount, fee in (("1000.00", "10"), ("600.00", "0")):
            payout = PayoutWorkflow.create_request(self.vendor.pk, amount)
            PayoutWorkflow.approve(payout.pk, self.admin)
            PayoutWorkflow.complete(payout.pk, f"REF-{amount}", transaction_fee=fee)

        self.vendor.refresh_from_db()
        paid = sum(PayoutHistory.objects.filter(vendor=self.vendor).values_list("net_amount", flat=True))
        self.assertEqual(paid, self.vendor.total_paid_out)
        self.assertEqual(self.vendor.total_paid_out, Decimal("1590.00"))
        self.assertTrue(self.vendor.balance_identity_holds())

    def test_complete_validates_fee(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        PayoutWorkflow.approve(payout.pk, self.admin)

        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.complete(payout.pk, "REF", transaction_fee="100.01")
        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.complete(payout.pk, "REF", transaction_fee="-1")
        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.complete(payout.pk, "REF", transaction_fee="0.005")
        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.complete(payout.pk, "", transaction_fee="0")

        payout.refresh_from_db()
        self.assertEqual(payout.status, PayoutRequest.Status.PROCESSING)
        self.assertBalances(self.vendor, reserved_balance="100.00", total_paid_out="0.00")

    def test_complete_requires_processing(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")

        with self.assertRaises(InvalidStateError):
            PayoutWorkflow.complete(payout.pk, "REF")
        with self.assertRaises(InvalidStateError):
            PayoutWorkflow.fail(payout.pk, "nope")

    def test_fail_restores_reservation(self):
        self.fund(self.vendor, "700.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "500.00")
        PayoutWorkflow.approve(payout.pk, self.admin)

        failed = PayoutWorkflow.fail(payout.pk, "Account closed")

        self.assertEqual(failed.status, PayoutRequest.Status.FAILED)
        self.assertEqual(failed.transfer_failure_reason, "Account closed")
        self.assertIsNotNone(failed.failed_at)
        self.assertBalances(self.vendor, available_balance="700.00", reserved_balance="0.00")
        self.assertFalse(PayoutHistory.objects.exists())

    def test_terminal_requests_cannot_move(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        PayoutWorkflow.reject(payout.pk, self.admin, reason="duplicate")

        with self.assertRaises(InvalidStateError):
            PayoutWorkflow.approve(payout.pk, self.admin)
        with self.assertRaises(InvalidStateError):
            PayoutWorkflow.reject(payout.pk, self.admin, reason="again")
        self.assertBalances(self.vendor, available_balance="100.00")

    def test_approve_twice_is_invalid_state(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        PayoutWorkflow.approve(payout.pk, self.admin)

        with self.assertRaises(InvalidStateError):
            PayoutWorkflow.approve(payout.pk, self.admin)

    def test_stale_expected_version_is_rejected(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        PayoutWorkflow.approve(payout.pk, self.admin, expected_version=1)

        with self.assertRaises(ConcurrentModificationError):
            PayoutWorkflow.fail(payout.pk, "late", expected_version=1)

        payout.refresh_from_db()
        self.assertEqual(payout.status, PayoutRequest.Status.PROCESSING)

    def test_conditional_update_detects_concurrent_change(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        stale = PayoutRequest.objects.get(pk=payout.pk)
        PayoutWorkflow.approve(payout.pk, self.admin)

        with self.assertRaises(ConcurrentModificationError):
            PayoutWorkflow._apply_transition(stale, PayoutRequest.Status.REJECTED)

    def test_approve_revalidates_reservation(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        Vendor.objects.filter(pk=self.vendor.pk).update(reserved_balance=Decimal("50.00"))

        with self.assertRaises(InsufficientBalanceError):
            PayoutWorkflow.approve(payout.pk, self.admin)

    def test_process_dispatch(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "60.00")

        with self.assertRaises(InvalidInputError):
            PayoutWorkflow.process(payout.pk, "escalate", self.admin)
        processed = PayoutWorkflow.process(payout.pk, "approve", self.admin, reason="fine")
        self.assertEqual(processed.status, PayoutRequest.Status.PROCESSING)

    def test_unknown_request(self):
        with self.assertRaises(ObjectNotFoundError):
            PayoutWorkflow.approve("00000000-0000-0000-0000-000000000000", self.admin)

    def test_payout_history_is_immutable(self):
        self.fund(self.vendor, "100.00")
        payout = PayoutWorkflow.create_request(self.vendor.pk, "100.00")
        PayoutWorkflow.approve(payout.pk, self.admin)
        history = PayoutWorkflow.complete(payout.pk, "REF-9")

        history.payment_reference = "EDITED"
        with self.assertRaises(ImmutableRecordError):
            history.save()
        with self.assertRaises(ImmutableRecordError):
            history.delete()
        self.assertEqual(PayoutHistory.objects.get(pk=history.pk).payment_reference, "REF-9")


# -----------------------------
# Paystack transfers
# -----------------------------
@override_settings(EARNINGS_HOLD_DAYS=0, PLATFORM_CURRENCY="KES")
class PaystackTransferTests(SettlementTestMixin, TestCase):
    def setUp(self):
        self.vendor = self.make_vendor(
            bank_name="KCB",
            bank_code="01",
            account_number="1234567890",
            account_name="Shop Vendor",
        )
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")
        self.fund(self.vendor, "2000.00")
        self.payout = PayoutWorkflow.create_request(self.vendor.pk, "2000.00")
        PayoutWorkflow.approve(self.payout.pk, self.admin)
        self.payout.refresh_from_db()

        self.client_mock = MagicMock(spec=PaystackClient)
        self.client_mock.create_transfer_recipient.return_value = {"recipient_code": "RCP_123"}
        self.client_mock.initiate_transfer.return_value = {"transfer_code": "TRF_abc", "id": 987, "status": "pending"}
        self.service = PayoutTransferService(client=self.client_mock)

    def test_missing_secret_key(self):
        with override_settings(PAYSTACK_SECRET_KEY=""), patch.dict(os.environ, {"PAYSTACK_SECRET_KEY": ""}):
            with self.assertRaises(PaymentConfigurationError):
                PaystackClient()

    def test_signature_verification(self):
        client = PaystackClient(secret_key="sk_test_secret")
        body = b'{"event": "transfer.success"}'
        signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()

        self.assertTrue(client.verify_signature(body, signature))
        self.assertFalse(client.verify_signature(body, "bad"))
        self.assertFalse(client.verify_signature(body, None))

    def test_gateway_errors(self):
        client = PaystackClient(secret_key="sk_test_secret")
        failed = MagicMock(ok=False, status_code=400)
        failed.json.return_value = {"status": False, "message": "Invalid key"}

        with patch.object(client.session, "request", return_value=failed):
            with self.assertRaisesMessage(PaymentGatewayError, "Invalid key"):
                client.verify_transfer("payout_x")

        with patch.object(client.session, "request", side_effect=requests.ConnectionError("offline")):
            with self.assertRaises(PaymentGatewayError):
                client.verify_transfer("payout_x")

    def test_successful_request_returns_data(self):
        client = PaystackClient(secret_key="sk_test_secret", base_url="https://paystack.test/")
        ok = MagicMock(ok=True, status_code=200)
        ok.json.return_value = {"status": True, "data": {"recipient_code": "RCP_1"}}

        with patch.object(client.session, "request", return_value=ok) as mock_request:
            data = client.create_transfer_recipient("Shop", "1234567890", "01", "kepss", "KES")

        self.assertEqual(data, {"recipient_code": "RCP_1"})
        mock_request.assert_called_once()
        self.assertEqual(mock_request.call_args.args[:2], ("POST", "https://paystack.test/transferrecipient"))

    def test_initiate_transfer_creates_recipient_once(self):
        payout = self.service.initiate_transfer(self.payout.pk)

        self.assertEqual(payout.paystack_transfer_code, "TRF_abc")
        self.assertEqual(payout.paystack_transfer_id, "987")
        self.assertEqual(payout.transfer_status, "pending")
        self.vendor.refresh_from_db()
        self.assertEqual(self.vendor.paystack_recipient_code, "RCP_123")

        kwargs = self.client_mock.initiate_transfer.call_args.kwargs
        self.assertEqual(kwargs["amount"], 200000)
        self.assertEqual(kwargs["reference"], self.payout.transfer_reference)
        self.assertEqual(kwargs["recipient_code"], "RCP_123")

        self.service.initiate_transfer(self.payout.pk)
        self.client_mock.initiate_transfer.assert_called_once()
        self.client_mock.create_transfer_recipient.assert_called_once()

    def test_initiate_transfer_requires_processing(self):
        self.fund(self.vendor, "10.00")
        pending = PayoutWorkflow.create_request(self.vendor.pk, "10.00")

        with self.assertRaises(InvalidStateError):
            self.service.initiate_transfer(pending.pk)
        self.client_mock.initiate_transfer.assert_not_called()

    def test_initiate_transfer_requires_destination(self):
        Vendor.objects.filter(pk=self.vendor.pk).update(account_number="", paystack_recipient_code="")

        with self.assertRaises(InvalidInputError):
            self.service.initiate_transfer(self.payout.pk)

    def test_success_event_completes_with_fee(self):
        event = {
            "event": "transfer.success",
            "data": {"reference": self.payout.transfer_reference, "transfer_code": "TRF_abc", "fee_charged": 5000, "status": "success"},
        }

        payout = self.service.handle_transfer_event(event)

        self.assertEqual(payout.status, PayoutRequest.Status.COMPLETED)
        self.assertEqual(payout.transfer_status, "success")
        history = PayoutHistory.objects.get(payout_request=payout)
        self.assertEqual(history.transaction_fee, Decimal("50.00"))
        self.assertEqual(history.net_amount, Decimal("1950.00"))
        self.assertBalances(self.vendor, total_paid_out="1950.00", total_transaction_fees="50.00")

        # Redelivery of the same event changes nothing.
        again = self.service.handle_transfer_event(event)
        self.assertEqual(again.status, PayoutRequest.Status.COMPLETED)
        self.assertEqual(PayoutHistory.objects.count(), 1)
        self.assertBalances(self.vendor, total_paid_out="1950.00")

    def test_failed_and_reversed_events_fail_request(self):
        event = {"event": "transfer.reversed", "data": {"reference": self.payout.transfer_reference, "reason": "Reversed by bank"}}

        payout = self.service.handle_transfer_event(event)

        self.assertEqual(payout.status, PayoutRequest.Status.FAILED)
        self.assertEqual(payout.transfer_failure_reason, "Reversed by bank")
        self.assertBalances(self.vendor, available_balance="2000.00", reserved_balance="0.00")

    def test_unrelated_and_unknown_events(self):
        self.assertIsNone(self.service.handle_transfer_event({"event": "charge.success", "data": {"reference": "x"}}))
        with self.assertRaises(ObjectNotFoundError):
            self.service.handle_transfer_event({"event": "transfer.success", "data": {"reference": "payout_unknown"}})
        with self.assertRaises(InvalidInputError):
            self.service.handle_transfer_event({"event": "transfer.success", "data": {}})

    def test_sync_transfer(self):
        self.client_mock.verify_transfer.return_value = {"status": "pending"}
        payout = self.service.sync_transfer(self.payout.pk)
        self.assertEqual(payout.status, PayoutRequest.Status.PROCESSING)
        self.assertEqual(payout.transfer_status, "pending")

        self.client_mock.verify_transfer.return_value = {"status": "success", "transfer_code": "TRF_abc"}
        payout = self.service.sync_transfer(self.payout.pk)
        self.assertEqual(payout.status, PayoutRequest.Status.COMPLETED)
        self.assertEqual(PayoutHistory.objects.get(payout_request=payout).payment_reference, "TRF_abc")


# -----------------------------
# Reports
# -----------------------------
@override_settings(EARNINGS_HOLD_DAYS=0, PLATFORM_DEFAULT_COMMISSION_PERCENTAGE=Decimal("20.00"))
class ReportTests(SettlementTestMixin, TestCase):
    def test_platform_earnings_report_uses_snapshots(self):
        big = self.make_vendor(email="big@example.com")
        small = self.make_vendor(email="small@example.com")
        self.fulfill(big, ["1000.00"])
        PlatformSettingsService.set_commission_percentage("10")
        self.fulfill(small, ["500.00"])

        report = platform_earnings_report("all")

        self.assertEqual(report["total_gross"], Decimal("1500.00"))
        self.assertEqual(report["total_platform_earnings"], Decimal("250.00"))
        self.assertEqual(report["total_vendor_earnings"], Decimal("1250.00"))
        self.assertEqual(report["total_orders"], 2)
        self.assertEqual(report["avg_order_value"], Decimal("750.00"))
        self.assertEqual(report["platform_fee_percentage"], Decimal("10.00"))
        self.assertEqual([v["vendor_id"] for v in report["top_earning_vendors"]], [str(big.pk), str(small.pk)])

    def test_period_filters_old_earnings(self):
        vendor = self.make_vendor()
        self.fulfill(vendor, ["100.00"])
        VendorEarning.objects.update(earning_date=timezone.now() - timedelta(days=40))
        self.fulfill(vendor, ["50.00"])

        self.assertEqual(platform_earnings_report("month")["total_gross"], Decimal("50.00"))
        self.assertEqual(platform_earnings_report("year")["total_gross"], Decimal("150.00"))

    def test_unknown_period(self):
        with self.assertRaises(InvalidInputError):
            platform_earnings_report("decade")

    def test_top_vendors_limited_to_five(self):
        for i in range(6):
            self.fulfill(self.make_vendor(email=f"v{i}@example.com"), [f"{(i + 1) * 10}.00"])

        report = platform_earnings_report("all")
        self.assertEqual(len(report["top_earning_vendors"]), 5)


# -----------------------------
# HTTP API
# -----------------------------
@override_settings(EARNINGS_HOLD_DAYS=0, PAYSTACK_SECRET_KEY="", PLATFORM_DEFAULT_COMMISSION_PERCENTAGE=Decimal("20.00"))
class SettlementApiTests(SettlementTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.vendor = self.make_vendor()
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")
        self.stranger = User.objects.create_user(email="stranger@example.com", password="Pass123!")
        self.fund(self.vendor, "5000.00")

    def _request_payout(self, amount="1000.00"):
        self.client.force_authenticate(self.vendor.owner)
        return self.client.post(
            f"/payment/vendor/{self.vendor.id}/payout-requests/",
            {"amount": amount, "reason": "Stock"},
            format="json",
        )

    def test_vendor_earnings_summary(self):
        self.client.force_authenticate(self.vendor.owner)
        resp = self.client.get(f"/payment/vendor/{self.vendor.id}/earnings/")

        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["summary"]["available_balance"], "5000.00")
        self.assertEqual(resp.data["summary"]["confirmed_orders"], 1)
        self.assertEqual(len(resp.data["earnings"]), 1)

    def test_earnings_history_and_order_earnings(self):
        self.client.force_authenticate(self.vendor.owner)

        history = self.client.get(f"/payment/vendor/{self.vendor.id}/earnings/history/", {"status": "available"})
        self.assertEqual(history.status_code, 200, history.data)
        self.assertEqual(history.data["count"], 1)

        orders = self.client.get(f"/payment/vendor/{self.vendor.id}/order-earnings/")
        self.assertEqual(orders.status_code, 200, orders.data)
        self.assertEqual(orders.data[0]["net_earnings"], "5000.00")

    def test_vendor_endpoints_are_private(self):
        self.client.force_authenticate(self.stranger)
        self.assertEqual(self.client.get(f"/payment/vendor/{self.vendor.id}/earnings/").status_code, 403)

        self.client.force_authenticate(user=None)
        self.assertEqual(self.client.get(f"/payment/vendor/{self.vendor.id}/earnings/").status_code, 401)

    def test_create_payout_request(self):
        resp = self._request_payout("1000.00")

        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertEqual(resp.data["status"], "pending")
        self.assertEqual(resp.data["version"], 1)

        listing = self.client.get(f"/payment/vendor/{self.vendor.id}/payout-requests/", {"status": "pending"})
        self.assertEqual(len(listing.data), 1)

    def test_over_balance_request_is_400(self):
        resp = self._request_payout("5000.01")

        self.assertEqual(resp.status_code, 400)
        self.assertIn("Insufficient balance", resp.data["detail"])
        self.assertBalances(self.vendor, available_balance="5000.00", reserved_balance="0.00")

    def test_admin_list_requires_staff(self):
        self._request_payout()

        self.client.force_authenticate(self.vendor.owner)
        self.assertEqual(self.client.get("/payment/admin/payout-requests/").status_code, 403)

        self.client.force_authenticate(self.admin)
        resp = self.client.get("/payment/admin/payout-requests/", {"status": "pending"})
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(len(resp.data), 1)

    def test_full_review_flow(self):
        payout_id = self._request_payout("2000.00").data["id"]
        self.client.force_authenticate(self.admin)

        approve = self.client.post(
            f"/payment/admin/payout-requests/{payout_id}/process/",
            {"action": "approve", "expected_version": 1},
            format="json",
        )
        self.assertEqual(approve.status_code, 200, approve.data)
        self.assertEqual(approve.data["status"], "processing")
        self.assertEqual(approve.data["version"], 2)

        stale = self.client.post(
            f"/payment/admin/payout-requests/{payout_id}/complete/",
            {"payment_reference": "MPESA-1", "transaction_fee": "50.00", "expected_version": 1},
            format="json",
        )
        self.assertEqual(stale.status_code, 409)

        complete = self.client.post(
            f"/payment/admin/payout-requests/{payout_id}/complete/",
            {"payment_reference": "MPESA-1", "transaction_fee": "50.00", "expected_version": 2},
            format="json",
        )
        self.assertEqual(complete.status_code, 200, complete.data)
        self.assertEqual(complete.data["net_amount"], "1950.00")

        self.client.force_authenticate(self.vendor.owner)
        history = self.client.get(f"/payment/vendor/{self.vendor.id}/payout-history/")
        self.assertEqual(history.status_code, 200, history.data)
        self.assertEqual(history.data[0]["payment_reference"], "MPESA-1")
        self.assertBalances(self.vendor, available_balance="3000.00", total_paid_out="1950.00", total_transaction_fees="50.00")

    def test_reject_needs_reason_and_restores_funds(self):
        payout_id = self._request_payout("3000.00").data["id"]
        self.client.force_authenticate(self.admin)

        missing = self.client.post(f"/payment/admin/payout-requests/{payout_id}/process/", {"action": "reject"}, format="json")
        self.assertEqual(missing.status_code, 400)

        resp = self.client.post(
            f"/payment/admin/payout-requests/{payout_id}/process/",
            {"action": "reject", "reason": "Suspicious activity"},
            format="json",
        )
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["status"], "rejected")
        self.assertBalances(self.vendor, available_balance="5000.00", reserved_balance="0.00")

    def test_complete_pending_request_is_conflict(self):
        payout_id = self._request_payout().data["id"]
        self.client.force_authenticate(self.admin)

        resp = self.client.post(
            f"/payment/admin/payout-requests/{payout_id}/complete/",
            {"payment_reference": "X"},
            format="json",
        )
        self.assertEqual(resp.status_code, 409)

    def test_fail_endpoint(self):
        payout_id = self._request_payout("500.00").data["id"]
        self.client.force_authenticate(self.admin)
        self.client.post(f"/payment/admin/payout-requests/{payout_id}/process/", {"action": "approve"}, format="json")

        resp = self.client.post(f"/payment/admin/payout-requests/{payout_id}/fail/", {"reason": "Wrong account"}, format="json")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["status"], "failed")
        self.assertBalances(self.vendor, available_balance="5000.00")

    def test_unknown_payout_is_404(self):
        self.client.force_authenticate(self.admin)
        resp = self.client.post(
            "/payment/admin/payout-requests/00000000-0000-0000-0000-000000000000/process/",
            {"action": "approve"},
            format="json",
        )
        self.assertEqual(resp.status_code, 404)

    def test_transfer_without_paystack_key_is_500(self):
        Vendor.objects.filter(pk=self.vendor.pk).update(
            bank_name="KCB", bank_code="01", account_number="1234567890", account_name="Shop Vendor"
        )
        payout_id = self._request_payout().data["id"]
        self.client.force_authenticate(self.admin)
        self.client.post(f"/payment/admin/payout-requests/{payout_id}/process/", {"action": "approve"}, format="json")

        with patch.dict(os.environ, {"PAYSTACK_SECRET_KEY": ""}):
            resp = self.client.post(f"/payment/admin/payout-requests/{payout_id}/transfer/")
        self.assertEqual(resp.status_code, 500)

    @patch("payment.views.PayoutTransferService.initiate_transfer")
    def test_transfer_gateway_error_is_502(self, mock_initiate):
        mock_initiate.side_effect = PaymentGatewayError("Paystack is down")
        payout_id = self._request_payout().data["id"]
        self.client.force_authenticate(self.admin)

        resp = self.client.post(f"/payment/admin/payout-requests/{payout_id}/transfer/")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.data["detail"], "Paystack is down")

    @override_settings(EARNINGS_HOLD_DAYS=5)
    def test_mature_endpoint(self):
        self.fulfill(self.vendor, ["100.00"])
        self.client.force_authenticate(self.admin)

        resp = self.client.post(
            f"/payment/admin/vendors/{self.vendor.id}/earnings/mature/",
            {"as_of": (timezone.now() + timedelta(days=6)).isoformat()},
            format="json",
        )
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["matured"], 1)
        self.assertEqual(resp.data["amount"], "80.00")

    def test_reports(self):
        self.client.force_authenticate(self.admin)

        report = self.client.get("/payment/admin/platform-earnings/", {"period": "all"})
        self.assertEqual(report.status_code, 200, report.data)
        self.assertEqual(report.data["total_gross"], "5000.00")

        bad = self.client.get("/payment/admin/platform-earnings/", {"period": "decade"})
        self.assertEqual(bad.status_code, 400)

        overview = self.client.get("/payment/admin/vendor-earnings/")
        self.assertEqual(overview.status_code, 200, overview.data)
        self.assertEqual(overview.data[0]["vendor_id"], str(self.vendor.id))

    def test_commission_settings(self):
        self.client.force_authenticate(self.admin)

        current = self.client.get("/payment/admin/commission-settings/")
        self.assertEqual(current.data["commission_percentage"], "20.00")
        self.assertEqual(current.data["source"], "default")

        updated = self.client.post("/payment/admin/commission-settings/", {"commission_percentage": "15.00"}, format="json")
        self.assertEqual(updated.status_code, 200, updated.data)
        self.assertEqual(updated.data["version"], 1)

        invalid = self.client.post("/payment/admin/commission-settings/", {"commission_percentage": "150"}, format="json")
        self.assertEqual(invalid.status_code, 400)

    def test_platform_settings(self):
        PlatformSetting.objects.create(key="support_email", value="help@example.com")
        self.client.force_authenticate(self.admin)

        listing = self.client.get("/payment/admin/platform-settings/")
        self.assertEqual(listing.status_code, 200, listing.data)
        self.assertEqual(listing.data[0]["key"], "support_email")

        resp = self.client.put("/payment/admin/platform-settings/support_email/", {"value": "ops@example.com"}, format="json")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["value"], "ops@example.com")

        missing = self.client.put("/payment/admin/platform-settings/nope/", {"value": "1"}, format="json")
        self.assertEqual(missing.status_code, 404)


@override_settings(EARNINGS_HOLD_DAYS=0, PAYSTACK_SECRET_KEY="sk_test_webhook")
class PaystackWebhookTests(SettlementTestMixin, TestCase):
    secret = "sk_test_webhook"

    def setUp(self):
        self.client = APIClient()
        self.vendor = self.make_vendor()
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")
        self.fund(self.vendor, "1000.00")
        self.payout = PayoutWorkflow.create_request(self.vendor.pk, "1000.00")
        PayoutWorkflow.approve(self.payout.pk, self.admin)

    @staticmethod
    def _body(payload):
        return payload if isinstance(payload, bytes) else json.dumps(payload).encode()

    def _sign(self, payload):
        return hmac.new(self.secret.encode(), self._body(payload), hashlib.sha512).hexdigest()

    def _post(self, payload, signature=None):
        extra = {}
        if signature is not None:
            extra["HTTP_X_PAYSTACK_SIGNATURE"] = signature
        return self.client.post("/payment/webhook/paystack/", self._body(payload), content_type="application/json", **extra)

    def _post_signed(self, payload):
        return self._post(payload, signature=self._sign(payload))

    def _success_event(self):
        return {
            "event": "transfer.success",
            "data": {"reference": self.payout.transfer_reference, "transfer_code": "TRF_1", "fee_charged": 2500},
        }

    def _failed_event(self, reference):
        return {"event": "transfer.failed", "data": {"reference": reference}}

    def test_signed_success_event_completes_payout(self):
        resp = self._post_signed(self._success_event())

        self.assertEqual(resp.status_code, 200)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutRequest.Status.COMPLETED)
        self.assertBalances(self.vendor, total_paid_out="975.00", total_transaction_fees="25.00")
        self.assertTrue(WebhookLog.objects.get(reference=self.payout.transfer_reference).processed)

    def test_bad_signature_is_rejected(self):
        resp = self._post(self._success_event(), signature="forged")

        self.assertEqual(resp.status_code, 401)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutRequest.Status.PROCESSING)
        self.assertFalse(WebhookLog.objects.exists())

    def test_unsigned_event_from_vendor_leaves_payout_processing(self):
        self.client.force_authenticate(self.vendor.owner)
        listing = self.client.get(f"/payment/vendor/{self.vendor.id}/payout-requests/")
        reference = listing.data[0]["transfer_reference"]
        self.client.force_authenticate(user=None)

        resp = self._post(self._failed_event(reference))

        self.assertEqual(resp.status_code, 401)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutRequest.Status.PROCESSING)
        self.assertBalances(self.vendor, available_balance="0.00", reserved_balance="1000.00")

    def test_events_refused_without_secret_key(self):
        event = self._failed_event(self.payout.transfer_reference)
        with override_settings(PAYSTACK_SECRET_KEY=""), patch.dict(os.environ, {"PAYSTACK_SECRET_KEY": ""}):
            unsigned = self._post(event)
            signed = self._post_signed(event)

        self.assertEqual(unsigned.status_code, 503)
        self.assertEqual(signed.status_code, 503)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutRequest.Status.PROCESSING)
        self.assertBalances(self.vendor, available_balance="0.00", reserved_balance="1000.00")
        self.assertFalse(WebhookLog.objects.exists())

    def test_signed_failed_event_restores_balance(self):
        resp = self._post_signed(self._failed_event(self.payout.transfer_reference))

        self.assertEqual(resp.status_code, 200)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PayoutRequest.Status.FAILED)
        self.assertBalances(self.vendor, available_balance="1000.00", reserved_balance="0.00")

    def test_invalid_json_and_unknown_reference(self):
        bad = self._post_signed(b"not json")
        self.assertEqual(bad.status_code, 400)
        self.assertTrue(WebhookLog.objects.filter(event_type="INVALID_JSON").exists())

        unknown = self._post_signed({"event": "transfer.success", "data": {"reference": "payout_nope"}})
        self.assertEqual(unknown.status_code, 404)

    def test_duplicate_delivery_is_harmless(self):
        self._post_signed(self._success_event())
        resp = self._post_signed(self._success_event())

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(PayoutHistory.objects.count(), 1)
        self.assertBalances(self.vendor, total_paid_out="975.00")


@override_settings(EARNINGS_HOLD_DAYS=0)
class SettlementAdminTests(SettlementTestMixin, TestCase):
    def setUp(self):
        self.vendor = self.make_vendor()
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")
        self.fund(self.vendor, "500.00")
        self.payout = PayoutWorkflow.create_request(self.vendor.pk, "200.00")
        self.earning = VendorEarning.objects.get(vendor=self.vendor)
        self.client.force_login(self.admin)

    def test_money_models_cannot_be_added_or_deleted(self):
        request = RequestFactory().get("/admin/")
        request.user = self.admin
        for model in (PayoutRequest, VendorEarning):
            model_admin = admin_site._registry[model]
            self.assertFalse(model_admin.has_add_permission(request), model)
            self.assertFalse(model_admin.has_delete_permission(request), model)

    def test_admin_add_and_delete_pages_are_forbidden(self):
        urls = [
            reverse("admin:payment_payoutrequest_add"),
            reverse("admin:payment_payoutrequest_delete", args=[self.payout.pk]),
            reverse("admin:payment_vendorearning_add"),
            reverse("admin:payment_vendorearning_delete", args=[self.earning.pk]),
        ]
        for url in urls:
            self.assertEqual(self.client.get(url).status_code, 403, url)
            self.assertEqual(self.client.post(url, {"post": "yes"}).status_code, 403, url)

        self.assertTrue(PayoutRequest.objects.filter(pk=self.payout.pk).exists())
        self.assertTrue(VendorEarning.objects.filter(pk=self.earning.pk).exists())
        self.assertBalances(self.vendor, available_balance="300.00", reserved_balance="200.00")

    def test_bulk_delete_action_is_not_offered(self):
        request = RequestFactory().get("/admin/")
        request.user = self.admin
        for model in (PayoutRequest, VendorEarning):
            self.assertNotIn("delete_selected", admin_site._registry[model].get_actions(request), model)


@override_settings(EARNINGS_HOLD_DAYS=2)
class MatureEarningsCommandTests(SettlementTestMixin, TestCase):
    def test_command_matures_due_earnings(self):
        vendor = self.make_vendor()
        self.fulfill(vendor, ["100.00"])
        out = StringIO()

        call_command("mature_earnings", "--as-of", (timezone.now() + timedelta(days=3)).isoformat(), stdout=out)

        self.assertIn("Matured 1 earnings", out.getvalue())
        self.assertBalances(vendor, available_balance="80.00", pending_balance="0.00")

    def test_command_with_nothing_due(self):
        out = StringIO()
        call_command("mature_earnings", stdout=out)
        self.assertIn("No pending earnings are due", out.getvalue())
