from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db.models import Count, Sum
from django.utils import timezone

from payment.models import VendorEarning
from vendor.models import Vendor

from .commission import money
from .errors import InvalidInputError
from .ledger import EarningsLedger
from .platform_settings import PlatformSettingsService

PERIODS = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "quarter": timedelta(days=90),
    "year": timedelta(days=365),
    "all": None,
}
TOP_VENDOR_LIMIT = 5
ZERO = Decimal("0.00")


def period_start(period: str, now=None) -> Optional[Any]:
    if period not in PERIODS:
        raise InvalidInputError(f"period must be one of: {', '.join(PERIODS)}")
    window = PERIODS[period]
    if window is None:
        return None
    return (now or timezone.now()) - window


def platform_earnings_report(period: str = "month", now=None) -> Dict[str, Any]:
    """
    Platform revenue over a period, computed from the commission snapshot stored
    on each earning rather than from today's rate.
    """
    earnings = VendorEarning.objects.all()
    start = period_start(period, now)
    if start is not None:
        earnings = earnings.filter(earning_date__gte=start)

    totals = earnings.aggregate(
        gross=Sum("gross_amount"),
        platform=Sum("platform_fee"),
        vendor=Sum("net_earnings"),
        orders=Count("order_id", distinct=True),
    )
    total_gross = totals["gross"] or ZERO
    total_orders = totals["orders"] or 0

    top_vendors = (
        earnings.values("vendor_id", "vendor__business_name")
        .annotate(earnings=Sum("net_earnings"), platform_fees=Sum("platform_fee"))
        .order_by("-earnings")[:TOP_VENDOR_LIMIT]
    )

    return {
        "period": period,
        "platform_fee_percentage": PlatformSettingsService.current_commission().percentage,
        "total_platform_earnings": totals["platform"] or ZERO,
        "total_vendor_earnings": totals["vendor"] or ZERO,
        "total_gross": total_gross,
        "total_orders": total_orders,
        "avg_order_value": money(total_gross / total_orders) if total_orders else ZERO,
        "top_earning_vendors": [
            {
                "vendor_id": str(row["vendor_id"]),
                "business_name": row["vendor__business_name"],
                "earnings": row["earnings"],
                "platform_fees": row["platform_fees"],
            }
            for row in top_vendors
        ],
    }


def vendor_earnings_overview() -> List[Dict[str, Any]]:
    summaries = [EarningsLedger.vendor_summary(vendor) for vendor in Vendor.objects.all()]
    summaries.sort(key=lambda s: s["total_earnings"], reverse=True)
    return summaries
