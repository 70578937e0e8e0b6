from types import SimpleNamespace
from unittest.mock import patch

from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User
from .models import DeviceToken, Notification
from .services import NotificationService, NotificationTemplates


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="vendor@example.com", password="Pass123!")
        self.admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")

    def test_send_safely_stores_rendered_template(self):
        NotificationService.send_safely(
            NotificationTemplates.earnings_recorded,
            self.user,
            order_number="ORD-1",
            amount="800.00",
        )

        note = Notification.objects.get(user=self.user)
        self.assertEqual(note.type, Notification.Type.EARNINGS_RECORDED)
        self.assertIn("ORD-1", note.message)
        self.assertEqual(note.payload["amount"], "800.00")

    def test_send_safely_without_user_targets_staff(self):
        payout = SimpleNamespace(
            id="p-1",
            vendor_id="v-1",
            vendor=SimpleNamespace(business_name="Fresh Farm"),
            requested_amount="500.00",
            status="pending",
        )

        NotificationService.send_safely(NotificationTemplates.payout_request_received, payout=payout)

        self.assertEqual(Notification.objects.filter(user=self.admin).count(), 1)
        self.assertFalse(Notification.objects.filter(user=self.user).exists())

    @patch("notifications.services.NotificationService.notify", side_effect=RuntimeError("db down"))
    def test_send_safely_swallows_errors(self, mock_notify):
        NotificationService.send_safely(
            NotificationTemplates.earnings_recorded,
            self.user,
            order_number="ORD-1",
            amount="1.00",
        )
        mock_notify.assert_called_once()

    @patch("notifications.services.NotificationService._init_firebase", return_value=False)
    def test_notify_without_push_credentials_still_stores(self, mock_init):
        DeviceToken.objects.create(user=self.user, token="tok-1", device_type="android")

        NotificationService.notify(
            user=self.user,
            notification_type=Notification.Type.PAYOUT_APPROVED,
            title="Payout Approved",
            message="ok",
        )

        self.assertEqual(Notification.objects.filter(user=self.user).count(), 1)
        mock_init.assert_called_once()


class NotificationsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="user@example.com", password="Pass123!")
        self.other = User.objects.create_user(email="other@example.com", password="Pass123!")
        self.client.force_authenticate(self.user)

    def _note(self, user, notification_type="payout_approved"):
        return Notification.objects.create(
            user=user,
            type=notification_type,
            title="Payout Approved",
            message="Approved",
            payload={"type": notification_type},
        )

    def test_list_only_own_notifications(self):
        self._note(self.user)
        self._note(self.user, "payout_completed")
        self._note(self.other)

        resp = self.client.get("/notifications/")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["count"], 2)

        filtered = self.client.get("/notifications/", {"type": "payout_completed"})
        self.assertEqual(filtered.data["count"], 1)

    def test_read_endpoints(self):
        note1 = self._note(self.user)
        note2 = self._note(self.user)

        self.assertEqual(self.client.get("/notifications/unread-count/").data["unread"], 2)

        read_one = self.client.patch(f"/notifications/{note1.id}/read/", {}, format="json")
        self.assertEqual(read_one.status_code, 200, read_one.data)
        note1.refresh_from_db()
        self.assertTrue(note1.is_read)

        read_all = self.client.post("/notifications/mark-all-read/", {}, format="json")
        self.assertEqual(read_all.status_code, 200, read_all.data)
        self.assertEqual(read_all.data["updated"], 1)
        note2.refresh_from_db()
        self.assertTrue(note2.is_read)

    def test_cannot_read_someone_elses_notification(self):
        note = self._note(self.other)

        resp = self.client.patch(f"/notifications/{note.id}/read/", {}, format="json")
        self.assertEqual(resp.status_code, 404)

    def test_device_token_reassigned_to_latest_user(self):
        resp = self.client.post(
            "/notifications/device-token/",
            {"token": "token-123", "device_type": "web"},
            format="json",
        )
        self.assertEqual(resp.status_code, 200, resp.data)

        self.client.force_authenticate(self.other)
        resp = self.client.post(
            "/notifications/device-token/",
            {"token": "token-123", "device_type": "android"},
            format="json",
        )
        self.assertEqual(resp.status_code, 200, resp.data)

        token_row = DeviceToken.objects.get(token="token-123")
        self.assertEqual(token_row.user_id, self.other.id)
        self.assertEqual(token_row.device_type, "android")

    def test_device_token_deactivate(self):
        DeviceToken.objects.create(user=self.user, token="token-a", device_type="web")

        resp = self.client.delete("/notifications/device-token/", {"token": "token-a"}, format="json")
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["deactivated"], 1)
        self.assertFalse(DeviceToken.objects.get(token="token-a").is_active)
