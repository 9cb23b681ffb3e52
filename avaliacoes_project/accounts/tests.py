from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import TestCase

from accounts.permissions import Capabilities, as_capabilities, capabilities_for
from core.exceptions import PermissionDenied


class CapabilityTests(TestCase):
    def setUp(self):
        self.User = get_user_model()

    def test_roles(self):
        admin = self.User.objects.create_user(username="root", password="x", role="ADMIN")
        manager = self.User.objects.create_user(username="mgr", password="x", role="MANAGER")
        attendant = self.User.objects.create_user(username="eva", password="x")

        admin_caps = capabilities_for(admin)
        self.assertTrue(admin_caps.delete_periods)
        self.assertTrue(admin_caps.purge_reminders)

        manager_caps = capabilities_for(manager)
        self.assertTrue(manager_caps.manage_periods)
        self.assertTrue(manager_caps.bypass_evaluation_window)
        self.assertFalse(manager_caps.delete_periods)
        self.assertFalse(manager_caps.purge_reminders)

        attendant_caps = capabilities_for(attendant)
        self.assertEqual(attendant_caps.user_id, attendant.pk)
        self.assertFalse(attendant_caps.is_elevated)
        self.assertFalse(attendant_caps.manage_reminders)

    def test_superuser_is_admin(self):
        root = self.User.objects.create_superuser(username="su", password="x")
        self.assertEqual(capabilities_for(root).role, "ADMIN")

    def test_anonymous_and_inactive_users_have_nothing(self):
        inactive = self.User.objects.create_user(username="gone", password="x", role="ADMIN", is_active=False)

        self.assertEqual(capabilities_for(AnonymousUser()), Capabilities())
        self.assertEqual(capabilities_for(inactive), Capabilities())
        self.assertEqual(capabilities_for(None), Capabilities())

    def test_require(self):
        caps = capabilities_for(self.User.objects.create_user(username="eva", password="x"))
        with self.assertRaisesMessage(PermissionDenied, "Managers only."):
            caps.require("manage_periods", "Managers only.")

    def test_as_capabilities_passes_through(self):
        caps = Capabilities(user_id=1, manage_periods=True)
        self.assertIs(as_capabilities(caps), caps)
