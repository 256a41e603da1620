from django.contrib.auth import get_user_model
from django.test import TestCase

User = get_user_model()


class CustomUserTest(TestCase):

    def test_email_is_login(self):
        user = User.objects.create_user(email='Parent@Test.com', password='testpass123')
        self.assertEqual(user.email, 'Parent@test.com')
        self.assertTrue(user.is_parent)
        self.assertFalse(user.is_school_admin)
        self.assertTrue(user.check_password('testpass123'))

    def test_superuser_is_school_admin(self):
        admin = User.objects.create_superuser(email='root@test.com', password='testpass123')
        self.assertEqual(admin.role, User.Role.ADMIN)
        self.assertTrue(admin.is_school_admin)

    def test_email_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')
