"""
CASHRUN Core Tests
==================

Tests for:
1. Custom User Model (creation, roles)
2. Display-name helpers used by progressive disclosure
"""

from django.test import TestCase

from core.models import User, UserRole


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def setUp(self):
        """Create test users for each role."""
        self.admin = User.objects.create_user(
            phone_number='+15550000001',
            password='testpass123',
            role=UserRole.ADMIN,
            first_name='Ada',
        )
        self.runner = User.objects.create_user(
            phone_number='+15550000002',
            password='testpass123',
            role=UserRole.RUNNER,
            first_name='marcus',
            last_name='Reed',
        )
        self.customer = User.objects.create_user(
            phone_number='+15550000003',
            password='testpass123',
            role=UserRole.CUSTOMER,
            first_name='Jane',
            last_name='Doe',
        )

    # ==========================================
    # User Creation Tests
    # ==========================================

    def test_user_creation_with_phone(self):
        """User should be created with phone number as identifier."""
        self.assertEqual(self.runner.phone_number, '+15550000002')
        self.assertTrue(self.runner.check_password('testpass123'))

    def test_user_without_password_cannot_log_in(self):
        user = User.objects.create_user(phone_number='+15550000009')
        self.assertFalse(user.has_usable_password())

    def test_create_user_requires_phone(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(phone_number='')

    def test_superuser_defaults_to_admin_role(self):
        superuser = User.objects.create_superuser(
            phone_number='+15550000010',
            password='testpass123',
        )
        self.assertEqual(superuser.role, UserRole.ADMIN)
        self.assertTrue(superuser.is_staff)
        self.assertTrue(superuser.is_admin)

    # ==========================================
    # Role helpers
    # ==========================================

    def test_role_properties(self):
        self.assertTrue(self.runner.is_runner)
        self.assertFalse(self.runner.is_customer)
        self.assertTrue(self.customer.is_customer)
        self.assertTrue(self.admin.is_admin)
        self.assertFalse(self.customer.is_admin)

    # ==========================================
    # Display names
    # ==========================================

    def test_full_name(self):
        self.assertEqual(self.customer.full_name, 'Jane Doe')
        self.assertEqual(self.admin.full_name, 'Ada')

    def test_first_initial_is_uppercased(self):
        self.assertEqual(self.runner.first_initial, 'M')

    def test_first_initial_empty_when_no_name(self):
        user = User.objects.create_user(phone_number='+15550000011')
        self.assertEqual(user.first_initial, '')

    def test_str_falls_back_to_phone(self):
        user = User.objects.create_user(phone_number='+15550000012', role=UserRole.RUNNER)
        self.assertEqual(str(user), '+15550000012 (RUNNER)')
