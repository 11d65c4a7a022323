from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APITestCase

from apps.escrow.models import Wallet


class UserManagerTests(TestCase):
    def test_create_user_normalizes_local_phone(self):
        User = get_user_model()
        user = User.objects.create_user(phone='0712345678', password='a-long-password')
        self.assertEqual(user.phone, '+254712345678')
        self.assertEqual(user.role, User.Role.BUYER)
        self.assertFalse(user.is_platform_admin)

    def test_superuser_is_platform_admin(self):
        User = get_user_model()
        admin = User.objects.create_superuser(email='ops@example.com', password='a-long-password')
        self.assertTrue(admin.is_platform_admin)
        self.assertEqual(admin.role, User.Role.ADMIN)

    def test_seller_gets_a_wallet(self):
        User = get_user_model()
        seller = User.objects.create_user(phone='+254712345679', role=User.Role.SELLER)
        self.assertTrue(Wallet.objects.filter(user=seller).exists())
        buyer = User.objects.create_user(phone='+254712345670')
        self.assertFalse(Wallet.objects.filter(user=buyer).exists())


class AuthApiTests(APITestCase):
    def test_register_then_login(self):
        res = self.client.post('/api/v1/auth/register/', {
            'phone': '0722000111', 'password': 'correct-horse-battery', 'role': 'SELLER',
            'display_name': 'Mama Mboga',
        }, format='json')
        self.assertEqual(res.status_code, 201, res.data)
        self.assertEqual(res.data['phone'], '+254722000111')
        self.assertEqual(res.data['role'], 'SELLER')
        self.assertIn('access', res.data)

        res = self.client.post('/api/v1/auth/login/', {
            'phone': '0722000111', 'password': 'correct-horse-battery',
        }, format='json')
        self.assertEqual(res.status_code, 200, res.data)
        self.assertIn('refresh', res.data)

    def test_register_rejects_admin_role(self):
        res = self.client.post('/api/v1/auth/register/', {
            'phone': '0722000112', 'password': 'correct-horse-battery', 'role': 'ADMIN',
        }, format='json')
        self.assertEqual(res.status_code, 400)

    def test_login_with_wrong_password(self):
        get_user_model().objects.create_user(phone='+254722000113', password='correct-horse-battery')
        res = self.client.post('/api/v1/auth/login/', {'phone': '+254722000113', 'password': 'nope'},
                               format='json')
        self.assertEqual(res.status_code, 400)

    def test_me_requires_auth(self):
        res = self.client.get('/api/v1/users/me/')
        self.assertEqual(res.status_code, 401)
