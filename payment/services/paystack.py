from __future__ import annotations

import hashlib
import hmac
import logging
import os
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from django.db import transaction

from payment.models import PayoutRequest

from .commission import from_minor_units, to_minor_units
from .errors import (
    InvalidInputError,
    InvalidStateError,
    ObjectNotFoundError,
    PaymentConfigurationError,
    PaymentGatewayError,
)
from .ledger import lock_vendor
from .payout import PayoutWorkflow

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.paystack.co"

TRANSFER_SUCCESS = "transfer.success"
TRANSFER_FAILED = "transfer.failed"
TRANSFER_REVERSED = "transfer.reversed"
TRANSFER_EVENTS = {TRANSFER_SUCCESS, TRANSFER_FAILED, TRANSFER_REVERSED}


def _get_setting(key: str, default: Any = None) -> Any:
    value = getattr(settings, key, None)
    if value in (None, ""):
        value = os.getenv(key, default)
    return value


class PaystackClient:
    """Thin wrapper over the Paystack transfer API. Amounts are in minor units."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self.secret_key = secret_key or _get_setting("PAYSTACK_SECRET_KEY", "")
        if not self.secret_key:
            raise PaymentConfigurationError(
                "Missing payment configuration: PAYSTACK_SECRET_KEY. Set it in Django settings or environment variables."
            )
        self.base_url = (base_url or _get_setting("PAYSTACK_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout = int(timeout or _get_setting("PAYSTACK_TIMEOUT", 30))
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Paystack request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"status": False, "message": response.text}

        if not response.ok or not body.get("status"):
            message = body.get("message") or f"Paystack returned HTTP {response.status_code}"
            logger.warning("Paystack %s %s failed: %s", method, path, message)
            raise PaymentGatewayError(message)
        return body.get("data") or {}

    def create_transfer_recipient(
        self,
        name: str,
        account_number: str,
        bank_code: str,
        recipient_type: str,
        currency: str,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/transferrecipient",
            {
                "type": recipient_type,
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": currency,
            },
        )

    def initiate_transfer(
        self,
        amount: int,
        recipient_code: str,
        reference: str,
        reason: str,
        currency: str,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/transfer",
            {
                "source": "balance",
                "amount": amount,
                "recipient": recipient_code,
                "reference": reference,
                "reason": reason,
                "currency": currency,
            },
        )

    def verify_transfer(self, reference: str) -> Dict[str, Any]:
        if not reference:
            raise InvalidInputError("reference is required")
        return self._request("GET", f"/transfer/verify/{reference}")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)


class PayoutTransferService:
    """Executes approved payout requests as Paystack transfers and settles them from transfer events."""

    def __init__(self, client: Optional[PaystackClient] = None) -> None:
        self._client = client
        self.currency = getattr(settings, "PLATFORM_CURRENCY", "KES")

    @property
    def client(self) -> PaystackClient:
        # Built on first use; settling webhook events makes no API calls.
        if self._client is None:
            self._client = PaystackClient()
        return self._client

    @staticmethod
    def _get_request(request_id) -> PayoutRequest:
        payout = PayoutRequest.objects.select_related("vendor").filter(pk=request_id).first()
        if payout is None:
            raise ObjectNotFoundError(f"Payout request {request_id} not found")
        return payout

    def _ensure_recipient(self, vendor) -> str:
        if vendor.paystack_recipient_code:
            return vendor.paystack_recipient_code
        if not vendor.has_payout_destination():
            raise InvalidInputError("Vendor has no bank or mobile money details for transfers")

        data = self.client.create_transfer_recipient(
            name=vendor.account_name,
            account_number=vendor.account_number,
            bank_code=vendor.bank_code or vendor.bank_name,
            recipient_type="mobile_money" if vendor.uses_mobile_money else "kepss",
            currency=self.currency,
        )
        recipient_code = data.get("recipient_code")
        if not recipient_code:
            raise PaymentGatewayError("Paystack did not return a recipient code")
        vendor.paystack_recipient_code = recipient_code
        vendor.save(update_fields=["paystack_recipient_code", "updated_at"])
        return recipient_code

    @transaction.atomic
    def initiate_transfer(self, request_id) -> PayoutRequest:
        payout = self._get_request(request_id)
        vendor = lock_vendor(payout.vendor_id)
        payout.refresh_from_db()

        if payout.status != PayoutRequest.Status.PROCESSING:
            raise InvalidStateError("Only approved (processing) payout requests can be transferred")
        if payout.paystack_transfer_code:
            return payout

        recipient_code = self._ensure_recipient(vendor)
        data = self.client.initiate_transfer(
            amount=to_minor_units(payout.requested_amount),
            recipient_code=recipient_code,
            reference=payout.transfer_reference,
            reason=f"Payout to {vendor.business_name}",
            currency=self.currency,
        )

        metadata = dict(payout.metadata or {})
        metadata["transfer_response"] = data
        payout.paystack_transfer_code = data.get("transfer_code") or ""
        payout.paystack_transfer_id = str(data.get("id") or "")
        payout.transfer_status = data.get("status") or "pending"
        payout.metadata = metadata
        payout.save(
            update_fields=[
                "paystack_transfer_code",
                "paystack_transfer_id",
                "transfer_status",
                "metadata",
                "updated_at",
            ]
        )
        logger.info("Transfer %s initiated for payout=%s", payout.paystack_transfer_code, payout.pk)
        return payout

    @transaction.atomic
    def handle_transfer_event(self, event: Dict[str, Any]) -> Optional[PayoutRequest]:
        event_type = event.get("event")
        data = event.get("data") or {}
        reference = data.get("reference")

        if event_type not in TRANSFER_EVENTS:
            logger.info("Ignoring Paystack event %s", event_type)
            return None
        if not reference:
            raise InvalidInputError("Transfer event has no reference")

        payout = PayoutRequest.objects.filter(transfer_reference=reference).first()
        if payout is None:
            raise ObjectNotFoundError(f"No payout request for transfer reference {reference}")
        if payout.is_terminal:
            logger.info("Duplicate %s for payout=%s in status %s", event_type, payout.pk, payout.status)
            return payout

        if event_type == TRANSFER_SUCCESS:
            fee = from_minor_units(data.get("fee_charged") or data.get("fee") or 0)
            PayoutWorkflow.complete(
                payout.pk,
                payment_reference=data.get("transfer_code") or reference,
                transaction_fee=fee,
            )
        else:
            reason = data.get("reason") or data.get("gateway_response") or f"Paystack {event_type}"
            PayoutWorkflow.fail(payout.pk, reason=reason)

        transfer_status = data.get("status") or event_type.split(".", 1)[1]
        PayoutRequest.objects.filter(pk=payout.pk).update(transfer_status=transfer_status)
        payout.refresh_from_db()
        return payout

    def sync_transfer(self, request_id) -> PayoutRequest:
        payout = self._get_request(request_id)
        if payout.is_terminal:
            return payout

        data = dict(self.client.verify_transfer(payout.transfer_reference))
        data.setdefault("reference", payout.transfer_reference)
        remote_status = (data.get("status") or "").lower()
        if remote_status == "success":
            return self.handle_transfer_event({"event": TRANSFER_SUCCESS, "data": data})
        if remote_status in {"failed", "reversed"}:
            return self.handle_transfer_event({"event": f"transfer.{remote_status}", "data": data})

        PayoutRequest.objects.filter(pk=payout.pk).update(transfer_status=remote_status)
        payout.refresh_from_db()
        return payout
