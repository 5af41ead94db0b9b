import unittest
from datetime import timedelta

from stockroom import create_app
from stockroom.errors import DuplicateValue, ValidationFailure
from stockroom.extensions import db
from stockroom.models import SessionToken, Settings, User
from stockroom.services import auth_service, settings_service


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
            "COMPANY_NAME": "Corner Hardware",
            "DEFAULT_CURRENCY": "GBP",
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SessionToken).delete()
        db.session.query(User).delete()
        db.session.query(Settings).delete()
        db.session.commit()

    def test_first_read_seeds_from_config(self):
        settings = settings_service.get_settings()
        self.assertEqual(settings.company_name, "Corner Hardware")
        self.assertEqual(settings.currency_code, "GBP")
        self.assertEqual(settings.currency_symbol, "£")
        self.assertEqual(db.session.query(Settings).count(), 1)

        again = settings_service.get_settings()
        self.assertEqual(again.id, settings.id)

    def test_partial_nested_update(self):
        settings_service.update_settings({"inventory": {"lowStockThreshold": 3, "lowStockAlert": False}})
        settings = settings_service.get_settings()
        self.assertEqual(settings.low_stock_threshold, 3)
        self.assertFalse(settings.low_stock_alert)
        self.assertEqual(settings.company_name, "Corner Hardware")

    def test_currency_code_validated(self):
        with self.assertRaises(ValidationFailure):
            settings_service.update_settings({"currency": {"code": "EURO"}})
        db.session.rollback()

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationFailure):
            settings_service.update_settings({"company": {"fax": "123"}})
        db.session.rollback()

    def test_blank_company_name_rejected(self):
        with self.assertRaises(ValidationFailure):
            settings_service.update_settings({"company": {"name": "   "}})
        db.session.rollback()


class AuthServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()
        cls.password_hash = auth_service.hash_password("Password123!")

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SessionToken).delete()
        db.session.query(User).delete()
        db.session.commit()

        self.user = User(name="Sam", email="sam@stockroom.test", password_hash=self.password_hash, role="manager")
        db.session.add(self.user)
        db.session.commit()

    def test_weak_passwords_rejected(self):
        for password in ("short1", "lettersonly", "12345678"):
            with self.assertRaises(ValidationFailure):
                auth_service.validate_password_strength(password)

    def test_duplicate_email_rejected(self):
        with self.assertRaises(DuplicateValue):
            auth_service.create_user(name="Other Sam", email="SAM@stockroom.test", password="Password123!")

    def test_authenticate(self):
        self.assertIsNotNone(auth_service.authenticate(" Sam@Stockroom.test ", "Password123!"))
        self.assertIsNone(auth_service.authenticate("sam@stockroom.test", "Password124!"))
        self.assertIsNone(auth_service.authenticate("nobody@stockroom.test", "Password123!"))

    def test_inactive_user_cannot_authenticate(self):
        self.user.is_active = False
        db.session.commit()
        self.assertIsNone(auth_service.authenticate("sam@stockroom.test", "Password123!"))

    def test_session_roundtrip_and_revoke(self):
        session, token = auth_service.create_session(self.user.id)
        self.assertNotEqual(session.token_hash, token)

        context = auth_service.validate_session(token)
        self.assertEqual(context.user.id, self.user.id)
        self.assertIn("maintenance.write", context.permissions)
        self.assertNotIn("settings.write", context.permissions)

        self.assertTrue(auth_service.revoke_session(token))
        self.assertFalse(auth_service.revoke_session(token))
        self.assertIsNone(auth_service.validate_session(token))

    def test_idle_session_is_revoked(self):
        session, token = auth_service.create_session(self.user.id)
        session.last_used_at = session.last_used_at - auth_service.SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        db.session.commit()

        self.assertIsNone(auth_service.validate_session(token))
        db.session.refresh(session)
        self.assertTrue(session.is_revoked)

    def test_expired_session(self):
        session, token = auth_service.create_session(self.user.id)
        session.expires_at = session.created_at - timedelta(seconds=1)
        db.session.commit()
        self.assertIsNone(auth_service.validate_session(token))

    def test_deactivated_user_loses_session(self):
        _, token = auth_service.create_session(self.user.id)
        self.user.is_active = False
        db.session.commit()
        self.assertIsNone(auth_service.validate_session(token))


if __name__ == "__main__":
    unittest.main()
