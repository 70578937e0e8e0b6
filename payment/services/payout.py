from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from notifications.services import NotificationService, NotificationTemplates
from payment.models import PayoutHistory, PayoutRequest

from .commission import to_money
from .errors import (
    ConcurrentModificationError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateError,
    ObjectNotFoundError,
)
from .ledger import EarningsLedger, lock_vendor

logger = logging.getLogger(__name__)


class PayoutWorkflow:
    """
    Vendor withdrawal requests.

    pending -> processing -> completed | failed, or pending -> rejected.
    Creating a request moves the amount from available_balance to
    reserved_balance; reject and fail move it back, complete pays it out.
    """

    @staticmethod
    def generate_transfer_reference() -> str:
        return f"payout_{uuid.uuid4().hex}"

    @staticmethod
    def _load_locked(request_id):
        vendor_id = PayoutRequest.objects.filter(pk=request_id).values_list("vendor_id", flat=True).first()
        if vendor_id is None:
            raise ObjectNotFoundError(f"Payout request {request_id} not found")
        vendor = lock_vendor(vendor_id)
        # Re-read after taking the vendor lock so the status/version checks see committed state.
        payout = PayoutRequest.objects.get(pk=request_id)
        return payout, vendor

    @staticmethod
    def _ensure_transition(payout: PayoutRequest, target: str, expected_version: Optional[int]) -> None:
        if expected_version is not None and int(expected_version) != payout.version:
            raise ConcurrentModificationError(
                f"Payout request {payout.pk} was modified (version {payout.version}, expected {expected_version})"
            )
        if not PayoutRequest.can_transition(payout.status, target):
            raise InvalidStateError(f"Cannot move payout request from '{payout.status}' to '{target}'")

    @staticmethod
    def _apply_transition(payout: PayoutRequest, target: str, **changes) -> PayoutRequest:
        updated = PayoutRequest.objects.filter(
            pk=payout.pk,
            status=payout.status,
            version=payout.version,
        ).update(status=target, version=F("version") + 1, updated_at=timezone.now(), **changes)
        if updated != 1:
            raise ConcurrentModificationError(f"Payout request {payout.pk} was modified concurrently")
        payout.refresh_from_db()
        return payout

    @staticmethod
    def _release_reservation(vendor, amount: Decimal) -> None:
        vendor.reserved_balance -= amount
        vendor.available_balance += amount
        vendor.save(update_fields=["reserved_balance", "available_balance", "updated_at"])

    @staticmethod
    @transaction.atomic
    def create_request(vendor_id, requested_amount: Any, reason: str = "") -> PayoutRequest:
        amount = to_money(requested_amount, "requested_amount")
        if amount <= 0:
            raise InvalidInputError("Payout amount must be greater than 0")

        vendor = lock_vendor(vendor_id)
        if amount > vendor.available_balance:
            raise InsufficientBalanceError(
                f"Insufficient balance. Available: {vendor.available_balance}, requested: {amount}"
            )

        snapshot = vendor.available_balance
        vendor.available_balance -= amount
        vendor.reserved_balance += amount
        vendor.save(update_fields=["available_balance", "reserved_balance", "updated_at"])

        payout = PayoutRequest.objects.create(
            vendor=vendor,
            requested_amount=amount,
            available_balance=snapshot,
            request_reason=reason or "",
            transfer_reference=PayoutWorkflow.generate_transfer_reference(),
        )
        logger.info("Payout request %s created vendor=%s amount=%s", payout.pk, vendor.pk, amount)

        NotificationService.send_safely(NotificationTemplates.payout_requested, vendor.owner, payout=payout)
        NotificationService.send_safely(NotificationTemplates.payout_request_received, payout=payout)
        return payout

    @staticmethod
    @transaction.atomic
    def approve(request_id, admin, admin_notes: str = "", expected_version: Optional[int] = None) -> PayoutRequest:
        payout, vendor = PayoutWorkflow._load_locked(request_id)
        PayoutWorkflow._ensure_transition(payout, PayoutRequest.Status.PROCESSING, expected_version)

        if vendor.reserved_balance < payout.requested_amount:
            raise InsufficientBalanceError("Reserved balance no longer covers this payout request")

        payout = PayoutWorkflow._apply_transition(
            payout,
            PayoutRequest.Status.PROCESSING,
            reviewed_by=admin,
            reviewed_at=timezone.now(),
            admin_notes=admin_notes or "",
        )
        logger.info("Payout request %s approved by %s", payout.pk, getattr(admin, "email", admin))

        NotificationService.send_safely(NotificationTemplates.payout_approved, vendor.owner, payout=payout)
        return payout

    @staticmethod
    @transaction.atomic
    def reject(request_id, admin, reason: str, expected_version: Optional[int] = None) -> PayoutRequest:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInputError("A rejection reason is required")

        payout, vendor = PayoutWorkflow._load_locked(request_id)
        PayoutWorkflow._ensure_transition(payout, PayoutRequest.Status.REJECTED, expected_version)

        PayoutWorkflow._release_reservation(vendor, payout.requested_amount)
        payout = PayoutWorkflow._apply_transition(
            payout,
            PayoutRequest.Status.REJECTED,
            reviewed_by=admin,
            reviewed_at=timezone.now(),
            admin_notes=reason,
        )
        logger.info("Payout request %s rejected: %s", payout.pk, reason)

        NotificationService.send_safely(NotificationTemplates.payout_rejected, vendor.owner, payout=payout)
        return payout

    @staticmethod
    def process(request_id, action: str, admin, reason: str = "", expected_version: Optional[int] = None) -> PayoutRequest:
        if action == "approve":
            return PayoutWorkflow.approve(request_id, admin, admin_notes=reason, expected_version=expected_version)
        if action == "reject":
            return PayoutWorkflow.reject(request_id, admin, reason=reason, expected_version=expected_version)
        raise InvalidInputError("action must be 'approve' or 'reject'")

    @staticmethod
    @transaction.atomic
    def complete(
        request_id,
        payment_reference: str,
        transaction_fee: Any = 0,
        expected_version: Optional[int] = None,
        completed_by=None,
    ) -> PayoutHistory:
        reference = (payment_reference or "").strip()
        if not reference:
            raise InvalidInputError("payment_reference is required")
        fee = to_money(transaction_fee if transaction_fee is not None else 0, "transaction_fee")

        payout, vendor = PayoutWorkflow._load_locked(request_id)
        PayoutWorkflow._ensure_transition(payout, PayoutRequest.Status.COMPLETED, expected_version)

        amount = payout.requested_amount
        if fee < 0 or fee > amount:
            raise InvalidInputError(f"transaction_fee must be between 0 and {amount}")
        if vendor.reserved_balance < amount:
            raise InsufficientBalanceError("Reserved balance no longer covers this payout request")

        now = timezone.now()
        net_amount = amount - fee
        payout = PayoutWorkflow._apply_transition(
            payout,
            PayoutRequest.Status.COMPLETED,
            payment_reference=reference,
            actual_paid_amount=net_amount,
            completed_at=now,
        )

        earnings = EarningsLedger.select_for_payout(vendor.pk, amount)
        if earnings:
            EarningsLedger.mark_paid_out([e.pk for e in earnings], payout.pk, paid_at=now)

        vendor.reserved_balance -= amount
        vendor.total_paid_out += net_amount
        vendor.total_transaction_fees += fee
        vendor.save(update_fields=["reserved_balance", "total_paid_out", "total_transaction_fees", "updated_at"])

        history = PayoutHistory.objects.create(
            payout_request=payout,
            vendor=vendor,
            amount=amount,
            transaction_fee=fee,
            net_amount=net_amount,
            status=PayoutHistory.Status.COMPLETED,
            payment_reference=reference,
            paystack_transfer_id=payout.paystack_transfer_id,
            processed_by=completed_by,
        )
        logger.info(
            "Payout request %s completed ref=%s amount=%s fee=%s earnings=%s",
            payout.pk,
            reference,
            amount,
            fee,
            len(earnings),
        )

        NotificationService.send_safely(
            NotificationTemplates.payout_completed,
            vendor.owner,
            payout=payout,
            history=history,
        )
        return history

    @staticmethod
    @transaction.atomic
    def fail(request_id, reason: str, expected_version: Optional[int] = None) -> PayoutRequest:
        reason = (reason or "").strip() or "Transfer failed"

        payout, vendor = PayoutWorkflow._load_locked(request_id)
        PayoutWorkflow._ensure_transition(payout, PayoutRequest.Status.FAILED, expected_version)

        PayoutWorkflow._release_reservation(vendor, payout.requested_amount)
        payout = PayoutWorkflow._apply_transition(
            payout,
            PayoutRequest.Status.FAILED,
            transfer_failure_reason=reason,
            failed_at=timezone.now(),
        )
        logger.warning("Payout request %s failed: %s", payout.pk, reason)

        NotificationService.send_safely(NotificationTemplates.payout_failed, vendor.owner, payout=payout)
        return payout
