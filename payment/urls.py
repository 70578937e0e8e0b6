from django.urls import path
from .views import (
    AdminMatureEarningsView,
    AdminPayoutCompleteView,
    AdminPayoutFailView,
    AdminPayoutProcessView,
    AdminPayoutRequestListView,
    AdminPayoutSyncView,
    AdminPayoutTransferView,
    CommissionSettingsView,
    PaystackWebhookView,
    PlatformEarningsView,
    PlatformSettingDetailView,
    PlatformSettingsView,
    VendorEarningsHistoryView,
    VendorEarningsOverviewView,
    VendorEarningsView,
    VendorOrderEarningsView,
    VendorPayoutHistoryView,
    VendorPayoutRequestsView,
)

urlpatterns = [
    # Vendor
    path("vendor/<uuid:vendor_id>/earnings/", VendorEarningsView.as_view(), name="vendor-earnings"),
    path("vendor/<uuid:vendor_id>/earnings/history/", VendorEarningsHistoryView.as_view(), name="vendor-earnings-history"),
    path("vendor/<uuid:vendor_id>/order-earnings/", VendorOrderEarningsView.as_view(), name="vendor-order-earnings"),
    path("vendor/<uuid:vendor_id>/payout-requests/", VendorPayoutRequestsView.as_view(), name="vendor-payout-requests"),
    path("vendor/<uuid:vendor_id>/payout-history/", VendorPayoutHistoryView.as_view(), name="vendor-payout-history"),
    # Admin
    path("admin/payout-requests/", AdminPayoutRequestListView.as_view(), name="admin-payout-requests"),
    path("admin/payout-requests/<uuid:pk>/process/", AdminPayoutProcessView.as_view(), name="admin-payout-process"),
    path("admin/payout-requests/<uuid:pk>/complete/", AdminPayoutCompleteView.as_view(), name="admin-payout-complete"),
    path("admin/payout-requests/<uuid:pk>/fail/", AdminPayoutFailView.as_view(), name="admin-payout-fail"),
    path("admin/payout-requests/<uuid:pk>/transfer/", AdminPayoutTransferView.as_view(), name="admin-payout-transfer"),
    path("admin/payout-requests/<uuid:pk>/sync/", AdminPayoutSyncView.as_view(), name="admin-payout-sync"),
    path("admin/vendors/<uuid:vendor_id>/earnings/mature/", AdminMatureEarningsView.as_view(), name="admin-mature-earnings"),
    path("admin/platform-earnings/", PlatformEarningsView.as_view(), name="admin-platform-earnings"),
    path("admin/vendor-earnings/", VendorEarningsOverviewView.as_view(), name="admin-vendor-earnings"),
    path("admin/commission-settings/", CommissionSettingsView.as_view(), name="admin-commission-settings"),
    path("admin/platform-settings/", PlatformSettingsView.as_view(), name="admin-platform-settings"),
    path("admin/platform-settings/<str:key>/", PlatformSettingDetailView.as_view(), name="admin-platform-setting"),
    # Webhooks
    path("webhook/paystack/", PaystackWebhookView.as_view(), name="paystack-webhook"),
]
