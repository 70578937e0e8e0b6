from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from notifications.services import NotificationService, NotificationTemplates
from order.models import OrderItem
from payment.models import PayoutHistory, PayoutRequest, VendorEarning
from vendor.models import Vendor

from .commission import calculate_commission, money, to_decimal
from .errors import AlreadyPaidError, InvalidInputError, ObjectNotFoundError
from .platform_settings import CommissionRate, PlatformSettingsService

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class MaturationResult:
    vendor_id: Any
    count: int
    amount: Decimal


def lock_vendor(vendor_id) -> Vendor:
    """Row-lock the vendor; every balance mutation goes through this."""
    try:
        return Vendor.objects.select_for_update().get(pk=vendor_id)
    except Vendor.DoesNotExist as exc:
        raise ObjectNotFoundError(f"Vendor {vendor_id} not found") from exc


class EarningsLedger:

    @staticmethod
    def hold_period() -> timedelta:
        days = int(getattr(settings, "EARNINGS_HOLD_DAYS", 0) or 0)
        return timedelta(days=max(days, 0))

    @staticmethod
    @transaction.atomic
    def record_earning(
        vendor_id,
        order_id,
        order_item_id,
        gross_amount: Any,
        commission_percentage: Any,
        commission_version: Optional[int] = None,
        earning_date=None,
    ) -> VendorEarning:
        breakdown = calculate_commission(gross_amount, commission_percentage)
        vendor = lock_vendor(vendor_id)

        if not OrderItem.objects.filter(pk=order_item_id, order_id=order_id).exists():
            raise InvalidInputError(f"Order item {order_item_id} does not belong to order {order_id}")
        if VendorEarning.objects.filter(vendor=vendor, order_item_id=order_item_id).exists():
            raise InvalidInputError(f"Earning already recorded for order item {order_item_id}")

        earning_date = earning_date or timezone.now()
        earning = VendorEarning.objects.create(
            vendor=vendor,
            order_id=order_id,
            order_item_id=order_item_id,
            gross_amount=breakdown.gross_amount,
            platform_fee_percentage=breakdown.platform_fee_percentage,
            commission_version=commission_version,
            platform_fee=breakdown.platform_fee,
            net_earnings=breakdown.net_earnings,
            status=VendorEarning.Status.PENDING,
            earning_date=earning_date,
            available_date=earning_date + EarningsLedger.hold_period(),
        )

        vendor.pending_balance += breakdown.net_earnings
        vendor.total_earnings += breakdown.net_earnings
        vendor.save(update_fields=["pending_balance", "total_earnings", "updated_at"])

        logger.info(
            "Recorded earning vendor=%s item=%s gross=%s fee=%s net=%s",
            vendor.pk,
            order_item_id,
            breakdown.gross_amount,
            breakdown.platform_fee,
            breakdown.net_earnings,
        )
        return earning

    @staticmethod
    @transaction.atomic
    def record_order_earnings(order, commission: Optional[CommissionRate] = None) -> List[VendorEarning]:
        """Record one earning per item of a fulfilled order, then mature whatever is already due."""
        commission = commission or PlatformSettingsService.commission_for_order(order)
        already_recorded = set(
            VendorEarning.objects.filter(order=order).values_list("order_item_id", flat=True)
        )
        earning_date = order.fulfilled_at or timezone.now()

        earnings = []
        for item in order.items.all().order_by("created_at"):
            if item.pk in already_recorded:
                continue
            earnings.append(
                EarningsLedger.record_earning(
                    vendor_id=order.vendor_id,
                    order_id=order.pk,
                    order_item_id=item.pk,
                    gross_amount=item.gross_amount,
                    commission_percentage=commission.percentage,
                    commission_version=commission.version,
                    earning_date=earning_date,
                )
            )

        if earnings:
            EarningsLedger.mature_pending(order.vendor_id)
            NotificationService.send_safely(
                NotificationTemplates.earnings_recorded,
                order.vendor.owner,
                order_number=order.order_number,
                amount=sum((e.net_earnings for e in earnings), ZERO),
            )
        return earnings

    @staticmethod
    @transaction.atomic
    def mature_pending(vendor_id, as_of=None) -> MaturationResult:
        as_of = as_of or timezone.now()
        vendor = lock_vendor(vendor_id)

        due = list(
            VendorEarning.objects.select_for_update().filter(
                vendor=vendor,
                status=VendorEarning.Status.PENDING,
                available_date__lte=as_of,
            )
        )
        if not due:
            return MaturationResult(vendor.pk, 0, ZERO)

        amount = sum((e.net_earnings for e in due), ZERO)
        VendorEarning.objects.filter(pk__in=[e.pk for e in due]).update(
            status=VendorEarning.Status.AVAILABLE,
            updated_at=timezone.now(),
        )

        vendor.pending_balance -= amount
        vendor.available_balance += amount
        vendor.save(update_fields=["pending_balance", "available_balance", "updated_at"])

        logger.info("Matured %s earnings (%s) for vendor=%s", len(due), amount, vendor.pk)
        return MaturationResult(vendor.pk, len(due), amount)

    @staticmethod
    def mature_all(as_of=None) -> List[MaturationResult]:
        as_of = as_of or timezone.now()
        vendor_ids = (
            VendorEarning.objects.filter(status=VendorEarning.Status.PENDING, available_date__lte=as_of)
            .values_list("vendor_id", flat=True)
            .distinct()
        )
        return [EarningsLedger.mature_pending(vendor_id, as_of=as_of) for vendor_id in list(vendor_ids)]

    @staticmethod
    @transaction.atomic
    def mark_paid_out(earning_ids: Iterable, payout_request_id, paid_at=None) -> int:
        ids = list(dict.fromkeys(earning_ids))
        if not ids:
            raise InvalidInputError("No earnings given to mark as paid out")

        payout = PayoutRequest.objects.filter(pk=payout_request_id).first()
        if payout is None:
            raise ObjectNotFoundError(f"Payout request {payout_request_id} not found")

        earnings = list(VendorEarning.objects.select_for_update().filter(pk__in=ids))
        if len(earnings) != len(ids):
            found = {e.pk for e in earnings}
            missing = [str(i) for i in ids if i not in found]
            raise InvalidInputError(f"Unknown earnings: {', '.join(missing)}")
        if any(e.vendor_id != payout.vendor_id for e in earnings):
            raise InvalidInputError("Earnings belong to a different vendor than the payout request")

        not_available = [e for e in earnings if e.status != VendorEarning.Status.AVAILABLE]
        if not_available:
            raise AlreadyPaidError(
                f"{len(not_available)} earning(s) are not available for payout "
                f"(statuses: {', '.join(sorted({e.status for e in not_available}))})"
            )

        return VendorEarning.objects.filter(pk__in=ids).update(
            status=VendorEarning.Status.PAID_OUT,
            paid_out_at=paid_at or timezone.now(),
            payout_request=payout,
            updated_at=timezone.now(),
        )

    @staticmethod
    def select_for_payout(vendor_id, amount: Any) -> List[VendorEarning]:
        """Oldest available earnings first, stopping before the first one that would exceed the amount."""
        remaining = money(to_decimal(amount))
        selected = []
        queryset = VendorEarning.objects.filter(
            vendor_id=vendor_id,
            status=VendorEarning.Status.AVAILABLE,
        ).order_by("available_date", "earning_date", "created_at")
        for earning in queryset:
            if earning.net_earnings > remaining:
                break
            selected.append(earning)
            remaining -= earning.net_earnings
        return selected

    @staticmethod
    def vendor_summary(vendor: Vendor) -> Dict[str, Any]:
        earnings = VendorEarning.objects.filter(vendor=vendor)
        order_ids = set(earnings.values_list("order_id", flat=True))
        pending_order_ids = set(
            earnings.filter(status=VendorEarning.Status.PENDING).values_list("order_id", flat=True)
        )
        last_payout = PayoutHistory.objects.filter(vendor=vendor).order_by("-created_at").first()

        return {
            "vendor_id": str(vendor.pk),
            "business_name": vendor.business_name,
            "total_earnings": vendor.total_earnings,
            "available_balance": vendor.available_balance,
            "pending_balance": vendor.pending_balance,
            "reserved_balance": vendor.reserved_balance,
            "total_paid_out": vendor.total_paid_out,
            "total_transaction_fees": vendor.total_transaction_fees,
            "confirmed_orders": len(order_ids - pending_order_ids),
            "pending_orders": len(pending_order_ids),
            "last_payout_date": last_payout.created_at if last_payout else None,
            "last_payout_amount": last_payout.net_amount if last_payout else None,
        }

    @staticmethod
    def order_earnings(vendor: Vendor) -> List[Dict[str, Any]]:
        rows = (
            VendorEarning.objects.filter(vendor=vendor)
            .values("order_id", "order__order_number", "order__fulfilled_at")
            .annotate(
                items=Count("id"),
                gross_amount=Sum("gross_amount"),
                platform_fee=Sum("platform_fee"),
                net_earnings=Sum("net_earnings"),
            )
            .order_by("-order__fulfilled_at")
        )
        statuses: Dict[Any, set] = {}
        for order_id, earning_status in VendorEarning.objects.filter(vendor=vendor).values_list("order_id", "status"):
            statuses.setdefault(order_id, set()).add(earning_status)

        return [
            {
                "order_id": str(row["order_id"]),
                "order_number": row["order__order_number"],
                "fulfilled_at": row["order__fulfilled_at"],
                "items": row["items"],
                "gross_amount": row["gross_amount"],
                "platform_fee": row["platform_fee"],
                "net_earnings": row["net_earnings"],
                "statuses": sorted(statuses.get(row["order_id"], set())),
            }
            for row in rows
        ]
