import json
import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction

from .models import DeviceToken, Notification

logger = logging.getLogger(__name__)


class NotificationService:
    _firebase_ready = False

    @classmethod
    def _init_firebase(cls) -> bool:
        if cls._firebase_ready:
            return True

        service_account_json = getattr(settings, "FCM_SERVICE_ACCOUNT_JSON", "")
        service_account_path = getattr(settings, "FCM_SERVICE_ACCOUNT_FILE", "")
        if not service_account_json and not service_account_path:
            logger.debug("FCM credentials not configured; push disabled")
            return False

        try:
            import firebase_admin
            from firebase_admin import credentials

            if not firebase_admin._apps:
                source = json.loads(service_account_json) if service_account_json else service_account_path
                project_id = getattr(settings, "FCM_PROJECT_ID", "")
                firebase_admin.initialize_app(
                    credentials.Certificate(source),
                    {"projectId": project_id} if project_id else None,
                )
            cls._firebase_ready = True
            return True
        except Exception:
            logger.exception("Failed to initialize Firebase app")
            return False

    @classmethod
    @transaction.atomic
    def notify(
        cls,
        *,
        user,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        payload = payload or {}
        notification = Notification.objects.create(
            user=user,
            type=notification_type,
            title=title,
            message=message,
            payload=payload,
        )
        try:
            cls._push(user=user, title=title, message=message, payload=payload)
        except Exception:
            logger.exception("Push send failed for user=%s type=%s", user.id, notification_type)
        return notification

    @classmethod
    def notify_staff(cls, *, notification_type: str, title: str, message: str, payload=None) -> int:
        staff = get_user_model().objects.filter(is_staff=True, is_active=True)
        sent = 0
        for admin in staff:
            cls.notify(
                user=admin,
                notification_type=notification_type,
                title=title,
                message=message,
                payload=payload,
            )
            sent += 1
        return sent

    @classmethod
    def send_safely(cls, template, user=None, **kwargs) -> None:
        """
        Render one of NotificationTemplates and deliver it to `user`, or to every
        active staff member when no user is given. Never raises: a notification
        problem must not undo the money movement that triggered it.
        """
        try:
            title, message, payload = template(**kwargs)
            if user is None:
                cls.notify_staff(notification_type=payload["type"], title=title, message=message, payload=payload)
            else:
                cls.notify(user=user, notification_type=payload["type"], title=title, message=message, payload=payload)
        except Exception:
            logger.exception("Failed to send %s notification", getattr(template, "__name__", template))

    @classmethod
    def _push(cls, *, user, title: str, message: str, payload: Dict[str, Any]) -> None:
        if not cls._init_firebase():
            return
        tokens = list(DeviceToken.objects.filter(user=user, is_active=True).values_list("token", flat=True))
        if not tokens:
            return

        from firebase_admin import messaging
        from firebase_admin.exceptions import FirebaseError

        for token in tokens:
            try:
                messaging.send(
                    messaging.Message(
                        notification=messaging.Notification(title=title, body=message),
                        data={k: str(v) for k, v in payload.items()},
                        token=token,
                    )
                )
            except FirebaseError as exc:
                error_code = getattr(exc, "code", "") or str(exc)
                # Stale or malformed tokens are never retried.
                if "registration-token-not-registered" in error_code or "invalid-argument" in error_code:
                    DeviceToken.objects.filter(token=token).update(is_active=False)
                logger.warning("FCM send failed token=%s code=%s", token[:12], error_code)


def _payout_payload(notification_type, payout, **extra):
    payload = {
        "type": notification_type,
        "entity_id": str(payout.id),
        "entity_type": "payout_request",
        "vendor_id": str(payout.vendor_id),
        "amount": str(payout.requested_amount),
        "status": payout.status,
    }
    payload.update(extra)
    return payload


class NotificationTemplates:
    @staticmethod
    def earnings_recorded(order_number, amount):
        return (
            "New Earnings",
            f"You earned {amount} from order #{order_number}.",
            {
                "type": Notification.Type.EARNINGS_RECORDED.value,
                "entity_type": "order",
                "order_number": order_number,
                "amount": str(amount),
            },
        )

    @staticmethod
    def payout_requested(payout):
        return (
            "Payout Requested",
            f"Your payout request of {payout.requested_amount} has been submitted for review.",
            _payout_payload(Notification.Type.PAYOUT_REQUESTED.value, payout),
        )

    @staticmethod
    def payout_request_received(payout):
        return (
            "New Payout Request",
            f"{payout.vendor.business_name} requested a payout of {payout.requested_amount}.",
            _payout_payload(Notification.Type.PAYOUT_REQUEST_RECEIVED.value, payout),
        )

    @staticmethod
    def payout_approved(payout):
        return (
            "Payout Approved",
            f"Your payout of {payout.requested_amount} was approved and is being processed.",
            _payout_payload(Notification.Type.PAYOUT_APPROVED.value, payout),
        )

    @staticmethod
    def payout_rejected(payout):
        return (
            "Payout Rejected",
            f"Your payout of {payout.requested_amount} was rejected: {payout.admin_notes}",
            _payout_payload(Notification.Type.PAYOUT_REJECTED.value, payout, reason=payout.admin_notes),
        )

    @staticmethod
    def payout_completed(payout, history):
        return (
            "Payout Completed",
            f"{history.net_amount} has been sent to your account (ref {history.payment_reference}).",
            _payout_payload(
                Notification.Type.PAYOUT_COMPLETED.value,
                payout,
                net_amount=str(history.net_amount),
                transaction_fee=str(history.transaction_fee),
            ),
        )

    @staticmethod
    def payout_failed(payout):
        return (
            "Payout Failed",
            f"Your payout of {payout.requested_amount} failed. The amount is back in your available balance.",
            _payout_payload(Notification.Type.PAYOUT_FAILED.value, payout, reason=payout.transfer_failure_reason),
        )
