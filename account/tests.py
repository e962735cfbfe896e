from django.test import TestCase
from rest_framework.test import APIClient

from account.models import User
from account.serializers import DeliveryPersonSerializer


class UserModelTests(TestCase):
    def test_create_user_hashes_password(self):
        user = User.objects.create_user(email="user@example.com", password="Pass123!")

        self.assertNotEqual(user.password, "Pass123!")
        self.assertTrue(user.check_password("Pass123!"))
        self.assertTrue(user.is_customer)

    def test_create_user_requires_email(self):
        with self.assertRaisesMessage(ValueError, "Users must have an email"):
            User.objects.create_user(email="", password="Pass123!")

    def test_superuser_is_admin(self):
        admin = User.objects.create_superuser(email="root@example.com", password="Pass123!")
        self.assertTrue(admin.is_admin)
        self.assertTrue(admin.is_staff)

    def test_delivery_persons_manager_filters_role(self):
        courier = User.objects.create_user(
            email="courier@example.com", password="Pass123!", role=User.Role.DELIVERY_PERSON
        )
        User.objects.create_user(email="customer@example.com", password="Pass123!")

        self.assertEqual(list(User.objects.delivery_persons()), [courier])
        self.assertTrue(courier.is_delivery_person)

    def test_full_name_falls_back_to_email(self):
        user = User.objects.create_user(email="noname@example.com", password="Pass123!")
        self.assertEqual(user.full_name, "noname@example.com")
        user.first_name, user.last_name = "Abebe", "Kebede"
        self.assertEqual(user.full_name, "Abebe Kebede")


class DeliveryPersonSerializerTests(TestCase):
    def test_serializer_exposes_activity_flag(self):
        courier = User.objects.create_user(
            email="rider@example.com",
            password="Pass123!",
            role=User.Role.DELIVERY_PERSON,
            first_name="Sara",
            last_name="Tesfaye",
            is_active=False,
        )

        data = DeliveryPersonSerializer(courier).data
        self.assertEqual(data["name"], "Sara Tesfaye")
        self.assertFalse(data["is_active"])
        self.assertNotIn("password", data)


class LoginTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        User.objects.create_user(email="login@example.com", password="Pass123!")

    def test_login_returns_token_pair(self):
        resp = self.client.post(
            "/auth/login/", {"email": "login@example.com", "password": "Pass123!"}, format="json"
        )
        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertIn("access", resp.data)
        self.assertIn("refresh", resp.data)

    def test_login_rejects_bad_password(self):
        resp = self.client.post(
            "/auth/login/", {"email": "login@example.com", "password": "wrong"}, format="json"
        )
        self.assertEqual(resp.status_code, 401)
