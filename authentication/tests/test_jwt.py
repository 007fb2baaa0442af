from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from marketplace.tests.factories import SellerFactory, UserFactory


class TokenObtainTest(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_token_carries_marketplace_role(self):
        seller = SellerFactory()

        response = self.client.post(
            reverse("authentication:token_obtain_pair"),
            {"email": seller.email, "password": "defaultpassword"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        token = AccessToken(response.data["access"])
        self.assertEqual(token["role"], "seller")
        self.assertTrue(token["is_seller"])
        self.assertFalse(token["is_admin"])

    def test_bearer_token_authenticates_api_calls(self):
        user = UserFactory()
        access = self.client.post(
            reverse("authentication:token_obtain_pair"),
            {"email": user.email, "password": "defaultpassword"},
            format="json",
        ).data["access"]

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        response = self.client.get(reverse("marketplace:order-list"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_wrong_password(self):
        user = UserFactory()

        response = self.client.post(
            reverse("authentication:token_obtain_pair"),
            {"email": user.email, "password": "not-it"},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
