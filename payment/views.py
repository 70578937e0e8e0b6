import json
import logging
from decimal import Decimal

from django.http import HttpRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from rest_framework import permissions, status
from rest_framework.generics import ListAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from vendor.models import Vendor
from vendor.permissions import IsVendorOwnerOrStaff

from .models import PayoutHistory, PayoutRequest, VendorEarning, WebhookLog
from .serializers import (
    CommissionSettingSerializer,
    MatureEarningsSerializer,
    PayoutCompleteSerializer,
    PayoutCreateSerializer,
    PayoutFailSerializer,
    PayoutHistorySerializer,
    PayoutProcessSerializer,
    PayoutRequestSerializer,
    PlatformSettingSerializer,
    PlatformSettingUpdateSerializer,
    VendorEarningSerializer,
)
from .services.errors import (
    AlreadyPaidError,
    ConcurrentModificationError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateError,
    ObjectNotFoundError,
    PaymentConfigurationError,
    PaymentGatewayError,
    PaymentServiceError,
)
from .services.ledger import EarningsLedger
from .services.payout import PayoutWorkflow
from .services.paystack import PaystackClient, PayoutTransferService
from .services.platform_settings import PlatformSettingsService
from .services.reports import platform_earnings_report, vendor_earnings_overview

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ObjectNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (AlreadyPaidError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (PaymentConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PaymentGatewayError, status.HTTP_502_BAD_GATEWAY),
    (InsufficientBalanceError, status.HTTP_400_BAD_REQUEST),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
)


def _error_response(exc: PaymentServiceError) -> Response:
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return Response({"detail": str(exc)}, status=code)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def _as_json(data):
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, dict):
        return {k: _as_json(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_as_json(v) for v in data]
    return data


class EarningsPagination(PageNumberPagination):
    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 200


class VendorScopedMixin:
    permission_classes = [IsVendorOwnerOrStaff]

    def get_vendor(self):
        vendor = get_object_or_404(Vendor, pk=self.kwargs["vendor_id"])
        self.check_object_permissions(self.request, vendor)
        return vendor


# -----------------------------
# Vendor
# -----------------------------
class VendorEarningsView(VendorScopedMixin, APIView):

    def get(self, request, vendor_id):
        vendor = self.get_vendor()
        recent = (
            VendorEarning.objects.filter(vendor=vendor)
            .select_related("order", "order_item")
            .order_by("-earning_date")[:50]
        )
        return Response(
            {
                "summary": _as_json(EarningsLedger.vendor_summary(vendor)),
                "earnings": VendorEarningSerializer(recent, many=True).data,
            }
        )


class VendorEarningsHistoryView(VendorScopedMixin, ListAPIView):
    serializer_class = VendorEarningSerializer
    pagination_class = EarningsPagination

    def get_queryset(self):
        qs = VendorEarning.objects.filter(vendor=self.get_vendor()).select_related("order", "order_item")
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs.order_by("-earning_date")


class VendorOrderEarningsView(VendorScopedMixin, APIView):

    def get(self, request, vendor_id):
        return Response(_as_json(EarningsLedger.order_earnings(self.get_vendor())))


class VendorPayoutRequestsView(VendorScopedMixin, APIView):

    def get(self, request, vendor_id):
        vendor = self.get_vendor()
        qs = vendor.payout_requests.select_related("vendor").order_by("-created_at")
        status_filter = request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        return Response(PayoutRequestSerializer(qs, many=True).data)

    def post(self, request, vendor_id):
        vendor = self.get_vendor()
        serializer = PayoutCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            payout = PayoutWorkflow.create_request(
                vendor.pk,
                serializer.validated_data["amount"],
                reason=serializer.validated_data.get("reason", ""),
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PayoutRequestSerializer(payout).data, status=status.HTTP_201_CREATED)


class VendorPayoutHistoryView(VendorScopedMixin, APIView):

    def get(self, request, vendor_id):
        vendor = self.get_vendor()
        history = PayoutHistory.objects.filter(vendor=vendor).order_by("-created_at")
        return Response(PayoutHistorySerializer(history, many=True).data)


# -----------------------------
# Admin: payout review
# -----------------------------
class AdminPayoutRequestListView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        qs = PayoutRequest.objects.select_related("vendor").order_by("-created_at")
        status_filter = request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter)
        vendor_filter = request.query_params.get("vendor_id")
        if vendor_filter:
            qs = qs.filter(vendor_id=vendor_filter)
        return Response(PayoutRequestSerializer(qs, many=True).data)


class AdminPayoutProcessView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = PayoutProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            payout = PayoutWorkflow.process(
                pk,
                data["action"],
                admin=request.user,
                reason=data.get("reason", ""),
                expected_version=data.get("expected_version"),
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PayoutRequestSerializer(payout).data)


class AdminPayoutCompleteView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = PayoutCompleteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            history = PayoutWorkflow.complete(
                pk,
                payment_reference=data["payment_reference"],
                transaction_fee=data.get("transaction_fee"),
                expected_version=data.get("expected_version"),
                completed_by=request.user,
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PayoutHistorySerializer(history).data, status=status.HTTP_200_OK)


class AdminPayoutFailView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        serializer = PayoutFailSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            payout = PayoutWorkflow.fail(
                pk,
                reason=serializer.validated_data["reason"],
                expected_version=serializer.validated_data.get("expected_version"),
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PayoutRequestSerializer(payout).data)


class AdminPayoutTransferView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        try:
            payout = PayoutTransferService().initiate_transfer(pk)
        except PaymentServiceError as exc:
            if isinstance(exc, PaymentGatewayError):
                logger.exception("Paystack transfer failed for payout=%s", pk)
            return _error_response(exc)

        return Response(PayoutRequestSerializer(payout).data)


class AdminPayoutSyncView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        try:
            payout = PayoutTransferService().sync_transfer(pk)
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PayoutRequestSerializer(payout).data)


class AdminMatureEarningsView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request, vendor_id):
        serializer = MatureEarningsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = EarningsLedger.mature_pending(vendor_id, as_of=serializer.validated_data.get("as_of"))
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response({"vendor_id": str(result.vendor_id), "matured": result.count, "amount": str(result.amount)})


# -----------------------------
# Admin: reporting and settings
# -----------------------------
class PlatformEarningsView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            report = platform_earnings_report(request.query_params.get("period", "month"))
        except PaymentServiceError as exc:
            return _error_response(exc)
        return Response(_as_json(report))


class VendorEarningsOverviewView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(_as_json(vendor_earnings_overview()))


class CommissionSettingsView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            rate = PlatformSettingsService.current_commission()
        except PaymentServiceError as exc:
            return _error_response(exc)
        return Response({"commission_percentage": str(rate.percentage), "version": rate.version, "source": rate.source})

    def post(self, request):
        serializer = CommissionSettingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            rate = PlatformSettingsService.set_commission_percentage(
                serializer.validated_data["commission_percentage"],
                updated_by=request.user,
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(
            {
                "message": "Commission settings updated successfully",
                "commission_percentage": str(rate.percentage),
                "version": rate.version,
            }
        )


class PlatformSettingsView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(PlatformSettingSerializer(PlatformSettingsService.list_settings(), many=True).data)


class PlatformSettingDetailView(APIView):
    permission_classes = [IsAdminUser]

    def put(self, request, key):
        serializer = PlatformSettingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            setting = PlatformSettingsService.set_value(
                key,
                serializer.validated_data["value"],
                updated_by=request.user,
                description=serializer.validated_data.get("description"),
            )
        except PaymentServiceError as exc:
            return _error_response(exc)

        return Response(PlatformSettingSerializer(setting).data)


# -----------------------------
# Paystack webhook
# -----------------------------
@method_decorator(csrf_exempt, name="dispatch")
class PaystackWebhookView(View):
    """
    Receives Paystack transfer events and settles the matching payout request.
    Every POST must carry a valid x-paystack-signature; without a secret key
    the endpoint refuses all events.
    """

    def get(self, request: HttpRequest):
        return JsonResponse({"info": "Paystack webhook endpoint, POST only"})

    def post(self, request: HttpRequest):
        try:
            client = PaystackClient()
        except PaymentConfigurationError:
            logger.error("Paystack webhook rejected: PAYSTACK_SECRET_KEY is not configured")
            return JsonResponse({"error": "Paystack webhooks are not configured"}, status=503)

        if not client.verify_signature(request.body, request.headers.get("x-paystack-signature")):
            logger.warning("Paystack webhook rejected: bad signature")
            return JsonResponse({"error": "Invalid signature"}, status=401)

        try:
            payload = json.loads(request.body)
        except json.JSONDecodeError:
            logger.error("Paystack webhook invalid JSON: %s", request.body[:500])
            WebhookLog.objects.create(
                provider="PAYSTACK",
                event_type="INVALID_JSON",
                reference="INVALID_JSON",
                payload={"raw_body": request.body.decode("utf-8", errors="replace")},
                processed=False,
                processing_attempts=1,
            )
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        if not isinstance(payload, dict):
            return JsonResponse({"error": "Webhook body must be a JSON object"}, status=400)

        event_type = payload.get("event") or "UNKNOWN"
        reference = (payload.get("data") or {}).get("reference") or "MISSING_REFERENCE"
        webhook_log = WebhookLog.objects.create(
            provider="PAYSTACK",
            event_type=event_type,
            reference=reference,
            payload=payload,
            processed=False,
            processing_attempts=1,
        )
        logger.info("Paystack webhook received: event=%s reference=%s", event_type, reference)

        try:
            payout = PayoutTransferService(client=client).handle_transfer_event(payload)
        except ObjectNotFoundError as exc:
            logger.warning("Paystack webhook for unknown payout: %s", exc)
            return JsonResponse({"error": str(exc)}, status=404)
        except PaymentServiceError as exc:
            logger.exception("Paystack webhook processing failed reference=%s", reference)
            return JsonResponse({"error": str(exc)}, status=400)

        webhook_log.processed = True
        webhook_log.save(update_fields=["processed"])
        if payout is None:
            return JsonResponse({"status": "ignored"}, status=200)
        return JsonResponse({"status": "processed", "payout_status": payout.status}, status=200)
