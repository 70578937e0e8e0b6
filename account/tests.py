from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User


class UserModelTests(TestCase):
    def test_create_user_hashes_password(self):
        user = User.objects.create_user(email="user@example.com", password="Pass123!")

        self.assertNotEqual(user.password, "Pass123!")
        self.assertTrue(user.check_password("Pass123!"))
        self.assertEqual(user.role, User.Role.CUSTOMER)

    def test_create_user_requires_email(self):
        with self.assertRaisesMessage(ValueError, "Users must have an email"):
            User.objects.create_user(email="", password="Pass123!")

    def test_superuser_is_staff_admin(self):
        admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")

        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)
        self.assertEqual(admin.role, User.Role.ADMIN)


class AccountApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_register_and_fetch_me(self):
        resp = self.client.post(
            "/auth/register/",
            {"email": "new@example.com", "password": "Pass123!", "first_name": "New"},
            format="json",
        )
        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertNotIn("password", resp.data)

        user = User.objects.get(email="new@example.com")
        self.assertTrue(user.check_password("Pass123!"))

        self.client.force_authenticate(user)
        me = self.client.get("/auth/me/")
        self.assertEqual(me.status_code, 200, me.data)
        self.assertEqual(me.data["email"], "new@example.com")

    def test_me_requires_authentication(self):
        resp = self.client.get("/auth/me/")
        self.assertEqual(resp.status_code, 401)
